"""ralph: long-running AI agent loop."""

__version__ = "0.1.0"
