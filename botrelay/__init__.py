"""Chat widget backend relaying visitor messages to automation webhooks."""

from .__version__ import __version__

__all__ = ["__version__"]
