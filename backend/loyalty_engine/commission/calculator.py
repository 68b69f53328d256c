"""
Commission Calculator.

Pure computation of tiered, capped commission and per-liter cashback:

    multiplier = settings.tier_multipliers.for_tier(tier)     (1.0 if unknown)
    commission = min(amount * base_rate% * multiplier, cap)
    rate       = commission / amount * 100                   (0 if amount == 0)
    cashback   = liters * cashback_rate_per_liter * multiplier

Rounding (half-up, cents) happens once, on the way out.
"""

from typing import Dict, Any, Union

import structlog

from ..exceptions import ConfigurationError, ValidationError
from ..models import CommissionResult, CommissionSettings, LoyaltyTier
from ..utils.money import is_number, round_money

logger = structlog.get_logger()


class CommissionCalculator:
    """Stateless commission and cashback calculator."""

    def calculate(
        self,
        amount: float,
        liters: float,
        tier: Union[LoyaltyTier, str, None],
        settings: CommissionSettings,
    ) -> CommissionResult:
        """
        Compute commission and cashback for one transaction.

        Args:
            amount: Sale amount in currency units
            liters: Volume sold
            tier: Loyalty tier at the time of the transaction
            settings: Commission settings snapshot in force at that time

        Returns:
            CommissionResult rounded to cents

        Raises:
            ConfigurationError: settings are malformed
            ValidationError: amount or liters are not valid quantities
        """
        self._check_settings(settings)
        self._check_quantity("amount", amount)
        self._check_quantity("liters", liters)

        multiplier = settings.tier_multipliers.for_tier(tier)

        base_commission = amount * settings.base_rate_percent / 100
        tier_commission = base_commission * multiplier
        # Cap is a hard ceiling applied after tier scaling
        commission = min(tier_commission, settings.commission_cap)

        effective_rate = (commission / amount * 100) if amount else 0.0
        cashback = liters * settings.cashback_rate_per_liter * multiplier

        return CommissionResult(
            commission_amount=round_money(commission),
            commission_rate=round_money(effective_rate),
            cashback_amount=round_money(cashback),
            tier_multiplier=multiplier,
        )

    def preview(
        self,
        tier: Union[LoyaltyTier, str, None],
        amount: float,
        settings: CommissionSettings,
    ) -> Dict[str, Any]:
        """Commission breakdown for a tier and amount, without cashback."""
        result = self.calculate(amount, 0, tier, settings)
        return {
            "tier": tier.value if isinstance(tier, LoyaltyTier) else tier,
            "sales_amount": amount,
            "commission": result.commission_amount,
            "commission_rate": result.commission_rate,
            "base_rate": settings.base_rate_percent,
            "tier_multiplier": result.tier_multiplier,
            "settings_id": settings.id,
        }

    def _check_settings(self, settings: CommissionSettings) -> None:
        if not isinstance(settings, CommissionSettings):
            raise ConfigurationError(
                f"Expected CommissionSettings, got {type(settings).__name__}"
            )
        try:
            settings.validate()
        except ConfigurationError as e:
            logger.critical(
                "Commission settings are malformed",
                settings_id=settings.id,
                error=e.message,
            )
            raise

    def _check_quantity(self, name: str, value: float) -> None:
        if not is_number(value) or value < 0:
            raise ValidationError(f"Invalid {name}: {value!r}", {name: value})
