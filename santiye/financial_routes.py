"""
FINANCIAL API ROUTES: TRANSACTIONS, INVOICES, PROGRESS PAYMENTS (HAKEDİŞ)

Every write goes through a core service:
- LinkingCoordinator for transactions and invoices (linked pairs, back-references)
- ProgressPaymentEngine for hakediş (derived figures, advance clamp, reconciliation)

Domain errors propagate to the exception handlers registered in server.py.
"""

from fastapi import APIRouter, Depends, Query, Response, status
from typing import Optional
import logging

from santiye.audit_service import AuditService
from santiye.auth import get_current_user
from santiye.core.linking_coordinator import LinkingCoordinator
from santiye.core.progress_payment_engine import ProgressPaymentEngine
from santiye.dependencies import (
    get_store, get_audit_service, get_linking_coordinator, get_payment_engine
)
from santiye.models import (
    TransactionCreateRequest, TransactionUpdate,
    InvoiceCreateRequest, InvoiceUpdate,
    ProgressPaymentCreate, ProgressPaymentUpdate
)
from santiye.serialization import serialize_doc
from santiye.storage import EntityStore, EntityNotFoundError, PROJECTS, TRANSACTIONS, INVOICES, PROGRESS_PAYMENTS

logger = logging.getLogger(__name__)

financial_router = APIRouter(prefix="/api", tags=["Finance"])

MODULE_NAME = "FINANCE"


# ============================================
# TRANSACTIONS (Gelir / Gider)
# ============================================

@financial_router.get("/transactions")
async def list_transactions(
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    type: Optional[str] = Query(default=None),
    store: EntityStore = Depends(get_store),
    current_user: dict = Depends(get_current_user)
):
    transactions = await store.get_transactions(project_id=project_id, type=type)
    return [serialize_doc(t) for t in transactions]


@financial_router.get("/transactions/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    store: EntityStore = Depends(get_store),
    current_user: dict = Depends(get_current_user)
):
    transaction = await store.get_transaction(transaction_id)
    if not transaction:
        raise EntityNotFoundError(TRANSACTIONS, transaction_id)
    return serialize_doc(transaction)


@financial_router.post("/transactions", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    request: TransactionCreateRequest,
    store: EntityStore = Depends(get_store),
    coordinator: LinkingCoordinator = Depends(get_linking_coordinator),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    """
    Create a transaction. With ``createInvoice`` and an invoice number the
    matching paid invoice is created too, or nothing is.
    """
    if not await store.get_project(request.project_id):
        raise EntityNotFoundError(PROJECTS, request.project_id)

    transaction_input = request.model_dump(exclude={"create_invoice", "invoice_tax_rate"})
    transaction = await coordinator.create_linked_transaction_and_invoice(
        transaction_input,
        create_invoice=request.create_invoice,
        invoice_tax_rate=request.invoice_tax_rate
    )

    await audit_service.log_action(
        module_name=MODULE_NAME,
        entity_type="TRANSACTION",
        entity_id=transaction["id"],
        action_type="LINKED_CREATE" if transaction.get("linked_invoice_id") else "CREATE",
        user_id=current_user["user_id"],
        project_id=transaction.get("project_id"),
        new_value=serialize_doc(transaction)
    )
    return serialize_doc(transaction)


@financial_router.patch("/transactions/{transaction_id}")
async def update_transaction(
    transaction_id: str,
    request: TransactionUpdate,
    store: EntityStore = Depends(get_store),
    coordinator: LinkingCoordinator = Depends(get_linking_coordinator),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    old = await store.get_transaction(transaction_id)
    if not old:
        raise EntityNotFoundError(TRANSACTIONS, transaction_id)

    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    updated = await coordinator.update_transaction(transaction_id, changes)

    await audit_service.log_action(
        module_name=MODULE_NAME,
        entity_type="TRANSACTION",
        entity_id=transaction_id,
        action_type="UPDATE",
        user_id=current_user["user_id"],
        project_id=updated.get("project_id"),
        old_value=serialize_doc(old),
        new_value=serialize_doc(updated)
    )
    return serialize_doc(updated)


@financial_router.delete("/transactions/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_transaction(
    transaction_id: str,
    coordinator: LinkingCoordinator = Depends(get_linking_coordinator),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    deleted = await coordinator.delete_transaction(transaction_id)

    await audit_service.log_action(
        module_name=MODULE_NAME,
        entity_type="TRANSACTION",
        entity_id=transaction_id,
        action_type="DELETE",
        user_id=current_user["user_id"],
        project_id=deleted.get("project_id"),
        old_value=serialize_doc(deleted)
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================
# INVOICES (Alış / Satış)
# ============================================

@financial_router.get("/invoices")
async def list_invoices(
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    type: Optional[str] = Query(default=None),
    store: EntityStore = Depends(get_store),
    current_user: dict = Depends(get_current_user)
):
    invoices = await store.get_invoices(project_id=project_id, type=type)
    return [serialize_doc(i) for i in invoices]


@financial_router.get("/invoices/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    store: EntityStore = Depends(get_store),
    current_user: dict = Depends(get_current_user)
):
    invoice = await store.get_invoice(invoice_id)
    if not invoice:
        raise EntityNotFoundError(INVOICES, invoice_id)
    return serialize_doc(invoice)


@financial_router.post("/invoices", status_code=status.HTTP_201_CREATED)
async def create_invoice(
    request: InvoiceCreateRequest,
    store: EntityStore = Depends(get_store),
    coordinator: LinkingCoordinator = Depends(get_linking_coordinator),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    """
    Create an invoice. With ``createTransaction`` the matching transaction
    is created too, or nothing is.
    """
    if request.project_id and not await store.get_project(request.project_id):
        raise EntityNotFoundError(PROJECTS, request.project_id)

    invoice_input = request.model_dump(
        exclude={"create_transaction", "is_grubu", "rayic_grubu", "payment_method"}
    )
    invoice = await coordinator.create_linked_invoice_and_transaction(
        invoice_input,
        create_transaction=request.create_transaction,
        is_grubu=request.is_grubu,
        rayic_grubu=request.rayic_grubu,
        payment_method=request.payment_method
    )

    await audit_service.log_action(
        module_name=MODULE_NAME,
        entity_type="INVOICE",
        entity_id=invoice["id"],
        action_type="LINKED_CREATE" if invoice.get("linked_transaction_id") else "CREATE",
        user_id=current_user["user_id"],
        project_id=invoice.get("project_id"),
        new_value=serialize_doc(invoice)
    )
    return serialize_doc(invoice)


@financial_router.patch("/invoices/{invoice_id}")
async def update_invoice(
    invoice_id: str,
    request: InvoiceUpdate,
    store: EntityStore = Depends(get_store),
    coordinator: LinkingCoordinator = Depends(get_linking_coordinator),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    old = await store.get_invoice(invoice_id)
    if not old:
        raise EntityNotFoundError(INVOICES, invoice_id)

    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    updated = await coordinator.update_invoice(invoice_id, changes)

    await audit_service.log_action(
        module_name=MODULE_NAME,
        entity_type="INVOICE",
        entity_id=invoice_id,
        action_type="UPDATE",
        user_id=current_user["user_id"],
        project_id=updated.get("project_id"),
        old_value=serialize_doc(old),
        new_value=serialize_doc(updated)
    )
    return serialize_doc(updated)


@financial_router.delete("/invoices/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_invoice(
    invoice_id: str,
    coordinator: LinkingCoordinator = Depends(get_linking_coordinator),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    deleted = await coordinator.delete_invoice(invoice_id)

    await audit_service.log_action(
        module_name=MODULE_NAME,
        entity_type="INVOICE",
        entity_id=invoice_id,
        action_type="DELETE",
        user_id=current_user["user_id"],
        project_id=deleted.get("project_id"),
        old_value=serialize_doc(deleted)
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================
# PROGRESS PAYMENTS (Hakediş)
# ============================================

@financial_router.get("/progress-payments")
async def list_progress_payments(
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    payment_status: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None),
    engine: ProgressPaymentEngine = Depends(get_payment_engine),
    current_user: dict = Depends(get_current_user)
):
    payments = await engine.list_progress_payments(project_id=project_id, status=payment_status, search=search)
    return [serialize_doc(p) for p in payments]


@financial_router.get("/progress-payments/summary")
async def summarize_progress_payments(
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    payment_status: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None),
    engine: ProgressPaymentEngine = Depends(get_payment_engine),
    current_user: dict = Depends(get_current_user)
):
    """Totals over the same filtered list the index page shows"""
    payments = await engine.list_progress_payments(project_id=project_id, status=payment_status, search=search)
    return serialize_doc(engine.summarize(payments))


@financial_router.get("/progress-payments/{payment_id}")
async def get_progress_payment(
    payment_id: str,
    store: EntityStore = Depends(get_store),
    current_user: dict = Depends(get_current_user)
):
    payment = await store.get_progress_payment(payment_id)
    if not payment:
        raise EntityNotFoundError(PROGRESS_PAYMENTS, payment_id)
    return serialize_doc(payment)


@financial_router.post("/progress-payments", status_code=status.HTTP_201_CREATED)
async def create_progress_payment(
    request: ProgressPaymentCreate,
    engine: ProgressPaymentEngine = Depends(get_payment_engine),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    payment = await engine.create_progress_payment(request.model_dump())

    await audit_service.log_action(
        module_name=MODULE_NAME,
        entity_type="PROGRESS_PAYMENT",
        entity_id=payment["id"],
        action_type="CREATE",
        user_id=current_user["user_id"],
        project_id=payment.get("project_id"),
        new_value=serialize_doc(payment)
    )
    return serialize_doc(payment)


@financial_router.patch("/progress-payments/{payment_id}")
async def update_progress_payment(
    payment_id: str,
    request: ProgressPaymentUpdate,
    store: EntityStore = Depends(get_store),
    engine: ProgressPaymentEngine = Depends(get_payment_engine),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    old = await store.get_progress_payment(payment_id)
    if not old:
        raise EntityNotFoundError(PROGRESS_PAYMENTS, payment_id)

    updated = await engine.update_progress_payment(payment_id, request.model_dump(exclude_unset=True))

    await audit_service.log_action(
        module_name=MODULE_NAME,
        entity_type="PROGRESS_PAYMENT",
        entity_id=payment_id,
        action_type="UPDATE",
        user_id=current_user["user_id"],
        project_id=updated.get("project_id"),
        old_value=serialize_doc(old),
        new_value=serialize_doc(updated)
    )
    return serialize_doc(updated)


@financial_router.delete("/progress-payments/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_progress_payment(
    payment_id: str,
    engine: ProgressPaymentEngine = Depends(get_payment_engine),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    deleted = await engine.delete_progress_payment(payment_id)

    await audit_service.log_action(
        module_name=MODULE_NAME,
        entity_type="PROGRESS_PAYMENT",
        entity_id=payment_id,
        action_type="DELETE",
        user_id=current_user["user_id"],
        project_id=deleted.get("project_id"),
        old_value=serialize_doc(deleted)
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
