"""Observability helpers for RunnerGate."""

from runnergate.observability.metrics import metrics

__all__ = ["metrics"]
