"""RunnerGate - runner dispatch and ranking service."""

__version__ = "0.1.0"
