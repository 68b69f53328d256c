"""Commission settings, calculation results and sales."""

from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from typing import Optional, Dict, Any, Union
from uuid import uuid4

from ..exceptions import ConfigurationError
from ..utils.dates import ensure_utc, utc_now
from ..utils.money import is_number
from .enums import LoyaltyTier, PayoutFrequency


@dataclass(frozen=True)
class TierMultipliers:
    """Commission/cashback multiplier per loyalty tier; unset tiers get 1.0."""
    lead: float = 1.0
    silver: float = 1.0
    gold: float = 1.0
    platinum: float = 1.0

    def for_tier(self, tier: Union[LoyaltyTier, str, None]) -> float:
        """
        Multiplier for a tier. Total over every input: an unknown or
        missing tier gets the base multiplier 1.0.
        """
        parsed = LoyaltyTier.parse(tier)
        if parsed is None:
            return 1.0
        return getattr(self, parsed.value)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class CommissionSettings:
    """
    Immutable, time-stamped commission configuration snapshot.

    A new snapshot is appended on every configuration change; old ones are
    deactivated but kept so historical sales stay reproducible.
    """
    id: str = field(default_factory=lambda: str(uuid4()))

    # Commission
    base_rate_percent: float = 5.0
    tier_multipliers: TierMultipliers = field(default_factory=TierMultipliers)
    commission_cap: float = 1000.0

    # Cashback, per liter sold (not a percentage)
    cashback_rate_per_liter: float = 2.0

    # Payout and program requirements
    minimum_active_users: int = 10
    payout_threshold: float = 50.0
    payout_frequency: PayoutFrequency = PayoutFrequency.MONTHLY
    auto_approval: bool = False

    # Metadata
    is_active: bool = True
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    NUMERIC_FIELDS = ("base_rate_percent", "commission_cap", "cashback_rate_per_liter")

    def validate(self) -> None:
        """Raise ConfigurationError unless every rate, cap and multiplier is usable."""
        problems = []
        for name in self.NUMERIC_FIELDS:
            value = getattr(self, name)
            if not is_number(value) or value < 0:
                problems.append(f"{name}={value!r}")
        if isinstance(self.base_rate_percent, (int, float)) and self.base_rate_percent > 100:
            problems.append(f"base_rate_percent={self.base_rate_percent!r}")

        if not isinstance(self.tier_multipliers, TierMultipliers):
            problems.append(f"tier_multipliers={self.tier_multipliers!r}")
        else:
            for tier in fields(TierMultipliers):
                value = getattr(self.tier_multipliers, tier.name)
                if not is_number(value) or value < 0:
                    problems.append(f"tier_multipliers.{tier.name}={value!r}")

        if problems:
            raise ConfigurationError(
                "Malformed commission settings: " + ", ".join(problems),
                {"settings_id": self.id, "fields": problems},
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], **overrides: Any) -> "CommissionSettings":
        """
        Build a snapshot from a settings document.

        Required numeric fields must be present; nothing is silently
        replaced by zero. A tier absent from tier_multipliers gets the
        base multiplier 1.0; a tier present with a bad value is rejected.
        """
        missing = [name for name in cls.NUMERIC_FIELDS if data.get(name) is None]
        multipliers = data.get("tier_multipliers")
        if multipliers is None:
            multipliers = {}
        if not isinstance(multipliers, dict):
            raise ConfigurationError(
                f"Invalid tier multipliers: {multipliers!r}",
                {"tier_multipliers": multipliers},
            )
        if missing:
            raise ConfigurationError(
                "Commission settings missing required fields: " + ", ".join(missing),
                {"missing": missing},
            )

        try:
            frequency = PayoutFrequency(data.get("payout_frequency", PayoutFrequency.MONTHLY.value))
        except ValueError:
            raise ConfigurationError(
                f"Invalid payout frequency: {data.get('payout_frequency')!r}"
            )

        created_at = data.get("created_at")
        values = dict(
            base_rate_percent=data["base_rate_percent"],
            tier_multipliers=TierMultipliers(
                **{
                    tier.value: multipliers[tier.value]
                    for tier in LoyaltyTier
                    if tier.value in multipliers
                }
            ),
            commission_cap=data["commission_cap"],
            cashback_rate_per_liter=data["cashback_rate_per_liter"],
            minimum_active_users=data.get("minimum_active_users", 10),
            payout_threshold=data.get("payout_threshold", 50.0),
            payout_frequency=frequency,
            auto_approval=bool(data.get("auto_approval", False)),
            is_active=bool(data.get("is_active", True)),
            created_at=ensure_utc(created_at) if isinstance(created_at, datetime) else None,
            created_by=data.get("created_by"),
        )
        if data.get("id"):
            values["id"] = data["id"]
        values.update(overrides)

        settings = cls(**values)
        settings.validate()
        return settings

    def meets_minimum_requirements(self, active_users: int) -> bool:
        return active_users >= self.minimum_active_users

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "base_rate_percent": self.base_rate_percent,
            "tier_multipliers": self.tier_multipliers.to_dict(),
            "commission_cap": self.commission_cap,
            "cashback_rate_per_liter": self.cashback_rate_per_liter,
            "minimum_active_users": self.minimum_active_users,
            "payout_threshold": self.payout_threshold,
            "payout_frequency": self.payout_frequency.value,
            "auto_approval": self.auto_approval,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
        }


DEFAULT_SETTINGS_ID = "default"

# Used whenever no snapshot exists for the requested time, so the engine
# stays operable before the first configuration.
DEFAULT_COMMISSION_SETTINGS = CommissionSettings(
    id=DEFAULT_SETTINGS_ID,
    base_rate_percent=5.0,
    tier_multipliers=TierMultipliers(lead=1.0, silver=1.2, gold=1.5, platinum=2.0),
    commission_cap=1000.0,
    cashback_rate_per_liter=2.0,
    minimum_active_users=10,
    payout_threshold=50.0,
    payout_frequency=PayoutFrequency.MONTHLY,
    auto_approval=False,
    is_active=True,
    created_at=None,
)


@dataclass(frozen=True)
class CommissionResult:
    """Output of the commission calculator, rounded to cents."""
    commission_amount: float
    commission_rate: float  # Effective rate after the cap, in percent
    cashback_amount: float
    tier_multiplier: float


@dataclass(frozen=True)
class CommissionSnapshot:
    """Commission frozen on a sale at creation time."""
    amount: float
    rate: float
    tier_used: str
    settings_snapshot_id: str


@dataclass
class Sale:
    """A sale with its commission computed once and frozen."""
    id: str = field(default_factory=lambda: str(uuid4()))
    user_id: str = ""
    store_id: Optional[str] = None
    amount: float = 0.0
    liters: float = 0.0
    tier: str = LoyaltyTier.LEAD.value
    occurred_at: datetime = field(default_factory=utc_now)
    commission: Optional[CommissionSnapshot] = None
    cashback_earned: float = 0.0

    def __post_init__(self):
        self.occurred_at = ensure_utc(self.occurred_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "store_id": self.store_id,
            "amount": self.amount,
            "liters": self.liters,
            "tier": self.tier,
            "occurred_at": self.occurred_at.isoformat(),
            "commission": asdict(self.commission) if self.commission else None,
            "cashback_earned": self.cashback_earned,
        }
