"""aish: a per-process context compiler that sits between the shell and the AI backend."""

__version__ = "0.3.0"
