"""capbridge - Native capability bridges with a uniform async facade."""

__version__ = "0.1.0"
