"""Mock interview coach: turn orchestration and speech coordination for practice interviews."""

__version__ = "0.1.0"
