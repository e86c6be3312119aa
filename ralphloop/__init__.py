"""
RALPH — bounded, resumable iteration loop around an autonomous coding agent.

Lifecycle hooks re-read durable state from disk on every call; the
controller decides whether to continue, rotate or stop.
"""

from ralphloop.identity import __codename__, __tagline__, __version__

__all__ = ["__codename__", "__tagline__", "__version__"]
