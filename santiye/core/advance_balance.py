"""
CORE: ADVANCE (AVANS) BALANCE CALCULATOR

remaining = project.advance_payment - SUM(advance_deduction) over the
project's progress payments, optionally excluding the payment being edited.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
import logging

from santiye.core.financial_precision import to_decimal, round_financial, ZERO
from santiye.storage import EntityStore, EntityNotFoundError, PROJECTS

logger = logging.getLogger(__name__)

ADVANCE_EXHAUSTED_WARNING = "Bu projenin avansı tükenmiştir, avans kesintisi uygulanmayacak"


@dataclass(frozen=True)
class AdvanceBalance:
    total: Decimal
    used: Decimal
    remaining: Decimal

    @property
    def exhausted(self) -> bool:
        return self.remaining <= ZERO

    def to_dict(self) -> dict:
        return {
            "total": str(self.total),
            "used": str(self.used),
            "remaining": str(self.remaining),
            "exhausted": self.exhausted,
            "warning": ADVANCE_EXHAUSTED_WARNING if self.exhausted else None,
        }


class AdvanceBalanceCalculator:

    def __init__(self, store: EntityStore):
        self.store = store

    async def remaining_advance(
        self,
        project_id: str,
        exclude_payment_id: Optional[str] = None,
        session=None
    ) -> AdvanceBalance:
        """
        Raises EntityNotFoundError if the project does not exist.
        A project without an advance has total 0 (and is therefore exhausted).
        """
        project = await self.store.get_project(project_id, session=session)
        if not project:
            raise EntityNotFoundError(PROJECTS, project_id)

        total = round_financial(project.get("advance_payment"))

        payments = await self.store.get_progress_payments(project_id=project_id, session=session)
        used = ZERO
        for payment in payments:
            if exclude_payment_id and payment["id"] == exclude_payment_id:
                continue
            used += to_decimal(payment.get("advance_deduction"))
        used = round_financial(used)

        balance = AdvanceBalance(total=total, used=used, remaining=total - used)
        logger.debug(f"[ADVANCE] project={project_id} total={total} used={used} remaining={balance.remaining}")
        return balance
