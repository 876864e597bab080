"""RunnerGate background tasks."""

from runnergate.tasks.sweep import start_dispatch_sweep, stop_dispatch_sweep

__all__ = ["start_dispatch_sweep", "stop_dispatch_sweep"]
