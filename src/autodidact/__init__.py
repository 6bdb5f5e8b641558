"""Credential vault, realtime sync and task orchestration core for the autodidact assistant."""

__version__ = "0.3.0"

__all__ = ["__version__"]
