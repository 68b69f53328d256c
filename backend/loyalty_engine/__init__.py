"""Transaction reconciliation and commission calculation engine."""

__version__ = "0.1.0"
