"""
Exception types raised by the load generator.
"""


class LoadError(Exception):
    """Base class for all storefront-load errors."""


class ConfigError(LoadError):
    """Invalid configuration value (duration string, rate, pool size...)."""


class CatalogError(LoadError):
    """Journey catalog is empty or its weights do not sum to a positive total."""


class ThresholdError(LoadError):
    """Threshold selector or condition could not be parsed."""


class TransportError(LoadError):
    """
    The request executor could not obtain a response.

    Attributes:
        kind: "timeout", "connection" or "other".
    """

    def __init__(self, message: str, kind: str = "other"):
        super().__init__(message)
        self.kind = kind
