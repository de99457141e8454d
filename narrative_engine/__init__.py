"""Decision and prediction resolution engine for narrative role-play."""

__all__ = ["__version__"]

__version__ = "0.1.0"
