"""Simple UDP publish/subscribe message broker."""

__version__ = "0.1.0"
