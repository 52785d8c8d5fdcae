"""
CORE: DUPLICATE INVOICE NUMBER PROTECTION

Prevents a second record from claiming an invoice number:
- Invoice numbers are unique across invoices
- A linked pair may not reuse a number already carried by the other ledger
Checks run BEFORE any write, so a violation has no side effects.
"""

from typing import Optional
import logging

from santiye.storage import EntityStore

logger = logging.getLogger(__name__)


class DuplicateInvoiceError(Exception):
    """Raised when an invoice number is already in use"""
    def __init__(self, invoice_number: str, existing_id: str, record_kind: str = "invoice"):
        self.invoice_number = invoice_number
        self.existing_id = existing_id
        self.record_kind = record_kind
        super().__init__(
            f"{invoice_number} numaralı fatura zaten mevcut, kayıt iptal edildi"
        )


class DuplicateInvoiceProtection:
    """
    Service for preventing duplicate invoice numbers.
    """

    def __init__(self, store: EntityStore):
        self.store = store

    async def check_invoice_number(
        self,
        invoice_number: str,
        exclude_invoice_id: Optional[str] = None,
        session=None
    ) -> bool:
        """
        Ensure no invoice other than ``exclude_invoice_id`` carries the number.

        Returns:
            True if NO duplicate found (safe to proceed)

        Raises:
            DuplicateInvoiceError if duplicate found
        """
        existing = await self.store.find_invoice_by_number(invoice_number, session=session)

        if existing and existing["id"] != exclude_invoice_id:
            logger.warning(f"[DUPLICATE] Invoice number {invoice_number} already used by invoice:{existing['id']}")
            raise DuplicateInvoiceError(invoice_number, existing["id"], "invoice")

        logger.debug(f"No duplicate invoice found for number:{invoice_number}")
        return True

    async def check_transaction_invoice_number(
        self,
        invoice_number: str,
        session=None
    ) -> bool:
        """
        Ensure no transaction already records the invoice number.
        Used before generating a transaction from an invoice.
        """
        existing = await self.store.find_transaction_by_invoice_number(invoice_number, session=session)

        if existing:
            logger.warning(
                f"[DUPLICATE] Invoice number {invoice_number} already recorded on transaction:{existing['id']}"
            )
            raise DuplicateInvoiceError(invoice_number, existing["id"], "transaction")

        return True
