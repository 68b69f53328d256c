"""Commission computation and settings versioning."""

from .calculator import CommissionCalculator
from .settings_store import SettingsVersionStore
from .sales import SaleCommissionService

__all__ = [
    "CommissionCalculator",
    "SettingsVersionStore",
    "SaleCommissionService",
]
