"""Version information for the Matomo connector."""

__version__ = "1.4.0"
