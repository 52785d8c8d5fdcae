"""
CORE: INVOICE <-> TRANSACTION LINKING COORDINATOR

Creates a Transaction and its Invoice (or the reverse) as one logical unit:
1. Duplicate invoice number check BEFORE any write
2. Primary record, then secondary record, then the back-reference update
3. Any failure after the first write deletes everything created so far
   (compensating deletes, best-effort) and raises LinkedRecordCreationError

When Mongo transactions are enabled the whole sequence also runs in one
session transaction, so the pair is atomic by construction.
"""

from decimal import Decimal
from typing import Optional, Dict, Any
import logging

from santiye.config import DEFAULT_INVOICE_TAX_RATE
from santiye.core.duplicate_protection import DuplicateInvoiceProtection
from santiye.core.financial_precision import (
    split_tax_inclusive, calculate_invoice_values, to_decimal
)
from santiye.core.progress_payment_engine import ProgressPaymentEngine
from santiye.models import (
    InvoiceStatus, IsGrubu, RayicGrubu, TransactionType,
    INVOICE_TYPE_FOR_TRANSACTION, TRANSACTION_TYPE_FOR_INVOICE,
    PROGRESS_PAYMENT_INCOME_KIND
)
from santiye.storage import EntityStore, EntityNotFoundError, TRANSACTIONS, INVOICES

logger = logging.getLogger(__name__)


class LinkedRecordCreationError(Exception):
    """Raised when a linked pair could not be completed and was rolled back"""
    def __init__(self, primary: str, message: str):
        self.primary = primary
        super().__init__(message)


class LinkValidationError(Exception):
    """Raised when a linked pair was requested with insufficient data"""
    pass


class BackReferenceUpdateError(Exception):
    """Raised when the back-reference update did not return a record"""
    pass


class LinkingCoordinator:
    """
    Owns every write path of Transactions and Invoices so that
    linked_invoice_id / linked_transaction_id never dangle.
    """

    def __init__(
        self,
        store: EntityStore,
        payment_engine: Optional[ProgressPaymentEngine] = None,
        default_tax_rate: Decimal = DEFAULT_INVOICE_TAX_RATE
    ):
        self.store = store
        self.payment_engine = payment_engine or ProgressPaymentEngine(store)
        self.duplicate_protection = DuplicateInvoiceProtection(store)
        self.default_tax_rate = default_tax_rate

    # =========================================================================
    # TRANSACTION FIRST
    # =========================================================================

    async def create_linked_transaction_and_invoice(
        self,
        transaction_input: Dict[str, Any],
        create_invoice: bool = False,
        invoice_tax_rate: Optional[Decimal] = None
    ) -> Dict[str, Any]:
        """
        Create a transaction and, when requested and an invoice number is
        present, its paid invoice counterpart.

        Raises:
            DuplicateInvoiceError if the invoice number is already used (no writes)
            LinkedRecordCreationError if the pair could not be completed (rolled back)
        """
        invoice_number = transaction_input.get("invoice_number")
        if not (create_invoice and invoice_number):
            transaction = await self.store.create_transaction(transaction_input)
            logger.info(f"Transaction created: {transaction['id']}")
            return transaction

        tax_rate = invoice_tax_rate if invoice_tax_rate is not None else self.default_tax_rate

        async with self.store.transaction() as session:
            await self.duplicate_protection.check_invoice_number(invoice_number, session=session)

            transaction = await self.store.create_transaction(transaction_input, session=session)
            invoice = None
            try:
                invoice_data = self._invoice_for_transaction(transaction, tax_rate)
                invoice = await self.store.create_invoice(invoice_data, session=session)

                linked = await self.store.update_transaction(
                    transaction["id"], {"linked_invoice_id": invoice["id"]}, session=session
                )
                if not linked:
                    raise BackReferenceUpdateError(
                        f"Transaction {transaction['id']} vanished before it could be linked"
                    )
            except Exception as e:
                logger.error(f"[LINK] Invoice for transaction {transaction['id']} failed: {str(e)}")
                await self._compensate(
                    invoice_id=invoice["id"] if invoice else None,
                    transaction_id=transaction["id"],
                    session=session
                )
                raise LinkedRecordCreationError(
                    "transaction",
                    f"Fatura oluşturulamadığı için işlem iptal edildi: {str(e)}"
                ) from e

        logger.info(f"[LINK] Transaction {linked['id']} <-> Invoice {invoice['id']} ({invoice_number})")
        return linked

    def _invoice_for_transaction(self, transaction: Dict[str, Any], tax_rate) -> Dict[str, Any]:
        split = split_tax_inclusive(transaction["amount"], tax_rate)
        return {
            "invoice_number": transaction["invoice_number"],
            "type": INVOICE_TYPE_FOR_TRANSACTION[transaction["type"]],
            "project_id": transaction.get("project_id"),
            "customer_id": transaction.get("customer_id"),
            "subcontractor_id": transaction.get("subcontractor_id"),
            "date": transaction["date"],
            "subtotal": split["subtotal"],
            "tax_rate": split["tax_rate"],
            "tax_amount": split["tax_amount"],
            "total": split["total"],
            "status": InvoiceStatus.PAID.value,
            "paid_amount": split["total"],
            "description": transaction.get("description"),
            "linked_transaction_id": transaction["id"],
        }

    # =========================================================================
    # INVOICE FIRST
    # =========================================================================

    async def create_linked_invoice_and_transaction(
        self,
        invoice_input: Dict[str, Any],
        create_transaction: bool = False,
        is_grubu: Optional[str] = None,
        rayic_grubu: Optional[str] = None,
        payment_method: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create an invoice and, when requested, the transaction recording it.
        Tax figures are recomputed from subtotal and tax_rate.

        Raises:
            DuplicateInvoiceError if the number is used by an invoice, or by a
                transaction when one is to be generated (no writes)
            LinkValidationError if a transaction is requested without a project
            LinkedRecordCreationError if the pair could not be completed (rolled back)
        """
        tax_rate = invoice_input.get("tax_rate")
        if tax_rate is None:
            tax_rate = self.default_tax_rate
        invoice_data = {
            **invoice_input,
            **calculate_invoice_values(invoice_input["subtotal"], tax_rate),
        }
        invoice_number = invoice_data["invoice_number"]

        if create_transaction and not invoice_data.get("project_id"):
            raise LinkValidationError("İşlem oluşturmak için faturaya proje seçilmelidir")

        async with self.store.transaction() as session:
            await self.duplicate_protection.check_invoice_number(invoice_number, session=session)

            if not create_transaction:
                invoice = await self.store.create_invoice(invoice_data, session=session)
                logger.info(f"Invoice created: {invoice['id']} ({invoice_number})")
                return invoice

            await self.duplicate_protection.check_transaction_invoice_number(invoice_number, session=session)

            invoice = await self.store.create_invoice(invoice_data, session=session)
            transaction = None
            try:
                transaction_data = self._transaction_for_invoice(invoice, is_grubu, rayic_grubu, payment_method)
                transaction = await self.store.create_transaction(transaction_data, session=session)

                linked = await self.store.update_invoice(
                    invoice["id"], {"linked_transaction_id": transaction["id"]}, session=session
                )
                if not linked:
                    raise BackReferenceUpdateError(
                        f"Invoice {invoice['id']} vanished before it could be linked"
                    )
            except Exception as e:
                logger.error(f"[LINK] Transaction for invoice {invoice['id']} failed: {str(e)}")
                await self._compensate(
                    invoice_id=invoice["id"],
                    transaction_id=transaction["id"] if transaction else None,
                    session=session
                )
                raise LinkedRecordCreationError(
                    "invoice",
                    f"İşlem kaydı oluşturulamadığı için fatura iptal edildi: {str(e)}"
                ) from e

        logger.info(f"[LINK] Invoice {linked['id']} ({invoice_number}) <-> Transaction {transaction['id']}")
        return linked

    def _transaction_for_invoice(
        self,
        invoice: Dict[str, Any],
        is_grubu: Optional[str],
        rayic_grubu: Optional[str],
        payment_method: Optional[str]
    ) -> Dict[str, Any]:
        transaction_type = TRANSACTION_TYPE_FOR_INVOICE[invoice["type"]]
        return {
            "project_id": invoice["project_id"],
            "type": transaction_type,
            "amount": invoice["total"],
            "date": invoice["date"],
            "description": invoice.get("description") or f"Fatura {invoice['invoice_number']}",
            "is_grubu": is_grubu or IsGrubu.GENEL_GIDERLER.value,
            "rayic_grubu": rayic_grubu or RayicGrubu.GENEL_GIDERLER.value,
            "invoice_number": invoice["invoice_number"],
            "customer_id": invoice.get("customer_id"),
            "subcontractor_id": invoice.get("subcontractor_id"),
            "income_kind": PROGRESS_PAYMENT_INCOME_KIND if transaction_type == TransactionType.INCOME.value else None,
            "payment_method": payment_method,
            "linked_invoice_id": invoice["id"],
        }

    # =========================================================================
    # ROLLBACK
    # =========================================================================

    async def _compensate(self, invoice_id: Optional[str], transaction_id: Optional[str], session=None):
        """
        Delete whatever part of the pair exists. Each delete is attempted
        independently and its failure only logged, so the triggering error is
        the one reported.
        """
        if invoice_id:
            try:
                await self.store.delete_invoice(invoice_id, session=session)
                logger.warning(f"[ROLLBACK] Deleted invoice {invoice_id}")
            except Exception as e:
                logger.error(f"[ROLLBACK] Could not delete invoice {invoice_id}: {str(e)}")
        if transaction_id:
            try:
                await self.store.delete_transaction(transaction_id, session=session)
                logger.warning(f"[ROLLBACK] Deleted transaction {transaction_id}")
            except Exception as e:
                logger.error(f"[ROLLBACK] Could not delete transaction {transaction_id}: {str(e)}")

    # =========================================================================
    # UPDATE / DELETE
    # =========================================================================

    async def update_transaction(self, transaction_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Update a transaction; a covering hakediş is recomputed when the amount changes.
        """
        async with self.store.transaction() as session:
            transaction = await self.store.get_transaction(transaction_id, session=session)
            if not transaction:
                raise EntityNotFoundError(TRANSACTIONS, transaction_id)

            self.payment_engine.check_transaction_edit(transaction, changes)

            updated = await self.store.update_transaction(transaction_id, changes, session=session)
            if not updated:
                raise EntityNotFoundError(TRANSACTIONS, transaction_id)

            if "amount" in changes and to_decimal(updated["amount"]) != to_decimal(transaction["amount"]):
                await self.payment_engine.refresh_for_transaction(updated, session=session)

        return updated

    async def delete_transaction(self, transaction_id: str) -> Dict[str, Any]:
        """
        Clear the linked invoice's back-reference and release the transaction
        from its hakediş, then delete it.
        """
        async with self.store.transaction() as session:
            transaction = await self.store.get_transaction(transaction_id, session=session)
            if not transaction:
                raise EntityNotFoundError(TRANSACTIONS, transaction_id)

            if transaction.get("linked_invoice_id"):
                await self.store.update_invoice(
                    transaction["linked_invoice_id"], {"linked_transaction_id": None}, session=session
                )
            await self.payment_engine.release_transaction(transaction, session=session)

            if not await self.store.delete_transaction(transaction_id, session=session):
                raise EntityNotFoundError(TRANSACTIONS, transaction_id)

        logger.info(f"Transaction deleted: {transaction_id}")
        return transaction

    async def update_invoice(self, invoice_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Update an invoice; tax_amount and total are always recomputed"""
        async with self.store.transaction() as session:
            invoice = await self.store.get_invoice(invoice_id, session=session)
            if not invoice:
                raise EntityNotFoundError(INVOICES, invoice_id)

            new_number = changes.get("invoice_number")
            if new_number and new_number != invoice.get("invoice_number"):
                await self.duplicate_protection.check_invoice_number(
                    new_number, exclude_invoice_id=invoice_id, session=session
                )

            values = calculate_invoice_values(
                changes.get("subtotal", invoice.get("subtotal")),
                changes.get("tax_rate", invoice.get("tax_rate")),
            )
            updated = await self.store.update_invoice(invoice_id, {**changes, **values}, session=session)
            if not updated:
                raise EntityNotFoundError(INVOICES, invoice_id)

        return updated

    async def delete_invoice(self, invoice_id: str) -> Dict[str, Any]:
        """Clear the linked transaction's back-reference, then delete the invoice"""
        async with self.store.transaction() as session:
            invoice = await self.store.get_invoice(invoice_id, session=session)
            if not invoice:
                raise EntityNotFoundError(INVOICES, invoice_id)

            if invoice.get("linked_transaction_id"):
                await self.store.update_transaction(
                    invoice["linked_transaction_id"], {"linked_invoice_id": None}, session=session
                )

            if not await self.store.delete_invoice(invoice_id, session=session):
                raise EntityNotFoundError(INVOICES, invoice_id)

        logger.info(f"Invoice deleted: {invoice_id}")
        return invoice
