"""Autonomous build orchestrator driving CLI coding agents against a git repository."""

__version__ = "0.1.0"
