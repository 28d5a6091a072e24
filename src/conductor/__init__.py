"""Conductor — capability-matched task orchestration with resilience guards."""

__version__ = "0.1.0"
