"""RunnerGate HTTP API."""

from runnergate.api.router import router

__all__ = ["router"]
