"""Record filesystem changes to a log and replay directory state from it."""

__version__ = "0.1.4"

__all__ = ["__version__"]