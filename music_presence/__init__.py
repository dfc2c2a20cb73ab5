"""Now-playing detection and Discord presence synchronization."""

__version__ = "1.0.0"
