"""KOR Inventory - product catalog and automated inventory alerts."""

__version__ = "1.0.0"
