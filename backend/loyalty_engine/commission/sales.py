"""
Sale commission service.

Computes commission and cashback once, at sale creation, against the
settings snapshot in force at the sale time, and freezes the result on the
sale. Later changes to rates or tier multipliers never alter it.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional, Union
from uuid import uuid4

import structlog

from ..models import CommissionSnapshot, LoyaltyTier, Sale
from ..storage.base import SaleRepository
from ..utils.dates import ensure_utc, utc_now
from .calculator import CommissionCalculator
from .settings_store import SettingsVersionStore

if TYPE_CHECKING:
    from ..reconciliation.ledger import LedgerSideEffects

logger = structlog.get_logger()


class SaleCommissionService:
    """Creates sales with a frozen commission snapshot."""

    def __init__(
        self,
        sales: SaleRepository,
        settings_store: SettingsVersionStore,
        ledger_effects: Optional["LedgerSideEffects"] = None,
        calculator: Optional[CommissionCalculator] = None,
    ):
        self.sales = sales
        self.settings_store = settings_store
        self.ledger_effects = ledger_effects
        self.calculator = calculator or CommissionCalculator()

    async def create_sale(
        self,
        user_id: str,
        store_id: Optional[str],
        amount: float,
        liters: float,
        tier: Union[LoyaltyTier, str, None],
        occurred_at: Optional[datetime] = None,
        sale_id: Optional[str] = None,
    ) -> Sale:
        """
        Create a sale and credit its cashback.

        Creating a sale whose id already exists returns the stored sale
        without crediting again.
        """
        if sale_id is not None:
            existing = await self.sales.get(sale_id)
            if existing is not None:
                logger.info("Sale already exists", sale_id=sale_id)
                return existing

        occurred_at = ensure_utc(occurred_at) if occurred_at else utc_now()
        snapshot = await self.settings_store.at_time(occurred_at)
        result = self.calculator.calculate(amount, liters, tier, snapshot)

        parsed = LoyaltyTier.parse(tier)
        tier_used = parsed.value if parsed else str(tier or LoyaltyTier.LEAD.value)

        sale = Sale(
            id=sale_id or str(uuid4()),
            user_id=user_id,
            store_id=store_id,
            amount=amount,
            liters=liters,
            tier=tier_used,
            occurred_at=occurred_at,
            commission=CommissionSnapshot(
                amount=result.commission_amount,
                rate=result.commission_rate,
                tier_used=tier_used,
                settings_snapshot_id=snapshot.id,
            ),
            cashback_earned=result.cashback_amount,
        )
        if not await self.sales.add_if_absent(sale):
            # A concurrent call stored the same id first; it does the crediting
            logger.info("Sale already exists", sale_id=sale.id)
            return await self.sales.get(sale.id)

        if self.ledger_effects is not None:
            await self.ledger_effects.credit_sale(sale)

        logger.info(
            "Sale created",
            sale_id=sale.id,
            amount=amount,
            tier=tier_used,
            commission=result.commission_amount,
            settings_snapshot_id=snapshot.id,
        )
        return sale
