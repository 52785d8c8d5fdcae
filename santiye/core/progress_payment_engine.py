"""
CORE: PROGRESS PAYMENT (HAKEDİŞ) ENGINE

Implements:
1. Derived figures: amount -> gross_amount -> advance_deduction -> net_payment
2. Advance clamp: advance_deduction_rate forced to 0 once the project's
   remaining advance (excluding the payment itself) is <= 0
3. Back-reference reconciliation: every id in transaction_ids has its
   transaction.progress_payment_id pointing at the payment, and nothing else does

Ordering: back-references are written before the payment row is updated and
cleared before the payment row is deleted.
"""

from decimal import Decimal
from typing import Optional, Dict, Any, List, Iterable
import logging

from santiye.core.advance_balance import AdvanceBalanceCalculator, AdvanceBalance
from santiye.core.financial_precision import (
    to_decimal, round_financial, safe_add, calculate_progress_payment_values, ZERO
)
from santiye.models import TransactionType, ProgressPaymentStatus
from santiye.storage import EntityStore, EntityNotFoundError, PROJECTS, PROGRESS_PAYMENTS

logger = logging.getLogger(__name__)


class ProgressPaymentValidationError(Exception):
    """Raised when a hakediş references transactions it may not cover"""
    pass


def unique_ids(ids: Iterable[str]) -> List[str]:
    """De-duplicate preserving first occurrence order"""
    seen = set()
    result = []
    for entity_id in ids:
        if entity_id not in seen:
            seen.add(entity_id)
            result.append(entity_id)
    return result


class ProgressPaymentEngine:

    def __init__(self, store: EntityStore, advance_calculator: Optional[AdvanceBalanceCalculator] = None):
        self.store = store
        self.advance_calculator = advance_calculator or AdvanceBalanceCalculator(store)

    # =========================================================================
    # DERIVED FIGURES
    # =========================================================================

    @staticmethod
    def calculate(
        amount,
        contractor_fee_rate,
        advance_deduction_rate,
        advance_balance: Optional[AdvanceBalance] = None
    ) -> Dict[str, Decimal]:
        """
        Derived hakediş figures. The deduction rate is clamped to 0 when the
        supplied advance balance is exhausted.
        """
        rate = to_decimal(advance_deduction_rate)
        if advance_balance is not None and advance_balance.exhausted:
            rate = ZERO
        return calculate_progress_payment_values(amount, contractor_fee_rate, rate)

    def _derive(self, project_id: str, amount, contractor_fee_rate, advance_deduction_rate, balance: AdvanceBalance):
        if balance.exhausted and to_decimal(advance_deduction_rate) > ZERO:
            logger.info(
                f"[ADVANCE] project={project_id} advance exhausted (remaining={balance.remaining}), "
                f"deduction rate {advance_deduction_rate} -> 0"
            )
        return self.calculate(amount, contractor_fee_rate, advance_deduction_rate, balance)

    # =========================================================================
    # TRANSACTION SELECTION
    # =========================================================================

    async def _load_transactions(
        self,
        project_id: str,
        transaction_ids: List[str],
        payment_id: Optional[str] = None,
        session=None
    ) -> List[Dict[str, Any]]:
        """
        Load the selected transactions, enforcing that each is an expense of
        the project not already covered by another hakediş.
        """
        transactions = []
        for transaction_id in transaction_ids:
            transaction = await self.store.get_transaction(transaction_id, session=session)
            if not transaction:
                raise ProgressPaymentValidationError(f"İşlem bulunamadı: {transaction_id}")
            if transaction.get("type") != TransactionType.EXPENSE.value:
                raise ProgressPaymentValidationError(
                    f"Hakedişe yalnızca gider işlemleri eklenebilir: {transaction_id}"
                )
            if transaction.get("project_id") != project_id:
                raise ProgressPaymentValidationError(
                    f"İşlem hakedişin projesine ait değil: {transaction_id}"
                )
            owner = transaction.get("progress_payment_id")
            if owner and owner != payment_id:
                raise ProgressPaymentValidationError(
                    f"İşlem başka bir hakedişe bağlı: {transaction_id}"
                )
            transactions.append(transaction)
        return transactions

    async def selectable_transactions(self, project_id: str, payment_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Project expenses that are free, or already owned by ``payment_id``"""
        project = await self.store.get_project(project_id)
        if not project:
            raise EntityNotFoundError(PROJECTS, project_id)
        expenses = await self.store.get_transactions(project_id=project_id, type=TransactionType.EXPENSE.value)
        return [
            t for t in expenses
            if not t.get("progress_payment_id") or t.get("progress_payment_id") == payment_id
        ]

    async def _next_payment_number(self, project_id: str, session=None) -> int:
        payments = await self.store.get_progress_payments(project_id=project_id, session=session)
        numbers = [p.get("payment_number") or 0 for p in payments]
        return max(numbers, default=0) + 1

    # =========================================================================
    # CREATE / UPDATE / DELETE
    # =========================================================================

    async def create_progress_payment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Persist a hakediş and point each selected transaction at it.
        Client-sent ``amount`` is ignored; it is the sum of the selection.
        """
        project_id = payload["project_id"]
        transaction_ids = unique_ids(payload.get("transaction_ids") or [])

        async with self.store.transaction() as session:
            balance = await self.advance_calculator.remaining_advance(project_id, session=session)
            transactions = await self._load_transactions(project_id, transaction_ids, session=session)

            amount = safe_add(*[t["amount"] for t in transactions])
            values = self._derive(
                project_id,
                amount,
                payload.get("contractor_fee_rate"),
                payload.get("advance_deduction_rate"),
                balance
            )

            payment_number = payload.get("payment_number") or await self._next_payment_number(project_id, session)

            data = {
                **payload,
                **values,
                "payment_number": payment_number,
                "received_amount": round_financial(payload.get("received_amount")),
                "status": payload.get("status") or ProgressPaymentStatus.PENDING.value,
                "transaction_ids": transaction_ids,
            }
            payment = await self.store.create_progress_payment(data, session=session)

            for transaction_id in transaction_ids:
                await self.store.update_transaction(
                    transaction_id, {"progress_payment_id": payment["id"]}, session=session
                )

        logger.info(
            f"[HAKEDIS] Created #{payment_number} ({payment['id']}) project={project_id} "
            f"transactions={len(transaction_ids)} net={payment['net_payment']}"
        )
        return payment

    async def update_progress_payment(self, payment_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a partial update. When ``transaction_ids`` is part of it, the old
        and new selections are diffed and back-references reconciled before the
        payment row is written.
        """
        async with self.store.transaction() as session:
            existing = await self.store.get_progress_payment(payment_id, session=session)
            if not existing:
                raise EntityNotFoundError(PROGRESS_PAYMENTS, payment_id)
            return await self._apply_update(existing, changes, session=session)

    async def _apply_update(self, existing: Dict[str, Any], changes: Dict[str, Any], session=None) -> Dict[str, Any]:
        changes = {k: v for k, v in changes.items() if v is not None}
        changes.pop("amount", None)

        payment_id = existing["id"]
        project_id = changes.get("project_id") or existing["project_id"]
        old_ids = list(existing.get("transaction_ids") or [])
        selection_changed = "transaction_ids" in changes
        new_ids = unique_ids(changes["transaction_ids"]) if selection_changed else old_ids

        transactions = await self._load_transactions(project_id, new_ids, payment_id=payment_id, session=session)

        if selection_changed:
            removed = [tid for tid in old_ids if tid not in new_ids]
            for transaction_id in removed:
                await self.store.update_transaction(
                    transaction_id, {"progress_payment_id": None}, session=session
                )
            for transaction_id in new_ids:
                await self.store.update_transaction(
                    transaction_id, {"progress_payment_id": payment_id}, session=session
                )
            logger.info(
                f"[HAKEDIS] Reconciled {payment_id}: released={len(removed)} covered={len(new_ids)}"
            )

        balance = await self.advance_calculator.remaining_advance(
            project_id, exclude_payment_id=payment_id, session=session
        )
        values = self._derive(
            project_id,
            safe_add(*[t["amount"] for t in transactions]),
            changes.get("contractor_fee_rate", existing.get("contractor_fee_rate")),
            changes.get("advance_deduction_rate", existing.get("advance_deduction_rate")),
            balance
        )

        update = {**changes, **values, "transaction_ids": new_ids}
        updated = await self.store.update_progress_payment(payment_id, update, session=session)
        if not updated:
            raise EntityNotFoundError(PROGRESS_PAYMENTS, payment_id)
        return updated

    async def delete_progress_payment(self, payment_id: str) -> Dict[str, Any]:
        """Clear every covered transaction's back-reference, then delete the row"""
        async with self.store.transaction() as session:
            existing = await self.store.get_progress_payment(payment_id, session=session)
            if not existing:
                raise EntityNotFoundError(PROGRESS_PAYMENTS, payment_id)

            for transaction_id in existing.get("transaction_ids") or []:
                await self.store.update_transaction(
                    transaction_id, {"progress_payment_id": None}, session=session
                )

            if not await self.store.delete_progress_payment(payment_id, session=session):
                raise EntityNotFoundError(PROGRESS_PAYMENTS, payment_id)

        logger.info(f"[HAKEDIS] Deleted {payment_id}, released {len(existing.get('transaction_ids') or [])} transactions")
        return existing

    # =========================================================================
    # HOOKS FOR TRANSACTION EDITS
    # =========================================================================

    def check_transaction_edit(self, transaction: Dict[str, Any], changes: Dict[str, Any]) -> None:
        """A transaction covered by a hakediş must stay an expense of the same project"""
        if not transaction.get("progress_payment_id"):
            return
        new_type = changes.get("type")
        if new_type is not None and new_type != TransactionType.EXPENSE.value:
            raise ProgressPaymentValidationError(
                "Hakedişe bağlı bir işlemin türü değiştirilemez"
            )
        new_project = changes.get("project_id")
        if new_project is not None and new_project != transaction.get("project_id"):
            raise ProgressPaymentValidationError(
                "Hakedişe bağlı bir işlemin projesi değiştirilemez"
            )

    async def refresh_for_transaction(self, transaction: Dict[str, Any], session=None) -> Optional[Dict[str, Any]]:
        """Recompute the owning hakediş after a covered transaction's amount changed"""
        payment_id = transaction.get("progress_payment_id")
        if not payment_id:
            return None
        payment = await self.store.get_progress_payment(payment_id, session=session)
        if not payment:
            return None
        return await self._apply_update(payment, {}, session=session)

    async def release_transaction(self, transaction: Dict[str, Any], session=None) -> Optional[Dict[str, Any]]:
        """Drop a transaction (about to be deleted) from its owning hakediş"""
        payment_id = transaction.get("progress_payment_id")
        if not payment_id:
            return None
        payment = await self.store.get_progress_payment(payment_id, session=session)
        if not payment:
            return None
        remaining = [tid for tid in payment.get("transaction_ids") or [] if tid != transaction["id"]]
        return await self._apply_update(payment, {"transaction_ids": remaining}, session=session)

    # =========================================================================
    # LISTING
    # =========================================================================

    async def list_progress_payments(
        self,
        project_id: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        payments = await self.store.get_progress_payments(project_id=project_id)
        if status:
            payments = [p for p in payments if p.get("status") == status]
        if search:
            term = search.strip().lower()
            project_names = {p["id"]: (p.get("name") or "") for p in await self.store.get_projects()}
            payments = [
                p for p in payments
                if term in project_names.get(p.get("project_id"), "").lower()
                or term in (p.get("description") or "").lower()
                or term in str(p.get("payment_number", ""))
            ]
        return payments

    @staticmethod
    def summarize(payments: List[Dict[str, Any]]) -> Dict[str, Any]:
        total_amount = safe_add(*[p.get("amount") for p in payments])
        total_received = safe_add(*[p.get("received_amount") for p in payments])
        pending_amount = safe_add(*[
            to_decimal(p.get("amount")) - to_decimal(p.get("received_amount"))
            for p in payments
            if p.get("status") == ProgressPaymentStatus.PENDING.value
        ])
        return {
            "count": len(payments),
            "total_amount": str(round_financial(total_amount)),
            "total_received": str(round_financial(total_received)),
            "pending_amount": str(round_financial(pending_amount)),
        }
