from fastapi import FastAPI, APIRouter, Depends, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware
import logging
from typing import Optional

from santiye.audit_service import AuditService
from santiye.auth import get_current_user
from santiye.config import CORS_ORIGINS, LOG_LEVEL
from santiye.core.advance_balance import AdvanceBalanceCalculator
from santiye.core.duplicate_protection import DuplicateInvoiceError
from santiye.core.financial_precision import FinancialPrecisionError, NegativeValueError
from santiye.core.linking_coordinator import LinkedRecordCreationError, LinkValidationError
from santiye.core.progress_payment_engine import ProgressPaymentEngine, ProgressPaymentValidationError
from santiye.dependencies import (
    client, get_db, get_store, get_audit_service, get_advance_calculator, get_payment_engine
)
from santiye.financial_routes import financial_router
from santiye.models import ProjectCreate, ProjectUpdate, BudgetItemCreate, BudgetItemUpdate
from santiye.serialization import serialize_doc
from santiye.storage import EntityStore, EntityNotFoundError, PROJECTS, BUDGET_ITEMS

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(
    title="Şantiye Financial Backend",
    version="1.0.0",
    description="Construction site transactions, invoices and progress payments (hakediş)"
)

# Create router with /api prefix
api_router = APIRouter(prefix="/api")

GENERIC_ERROR_MESSAGE = "Beklenmeyen bir hata oluştu, lütfen tekrar deneyin"


# ============================================
# ERROR HANDLERS (plain text bodies)
# ============================================

def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Geçersiz istek"


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return PlainTextResponse(_validation_message(exc), status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(ProgressPaymentValidationError)
@app.exception_handler(LinkValidationError)
@app.exception_handler(NegativeValueError)
@app.exception_handler(FinancialPrecisionError)
async def domain_validation_handler(request: Request, exc: Exception):
    return PlainTextResponse(str(exc), status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(EntityNotFoundError)
async def not_found_handler(request: Request, exc: EntityNotFoundError):
    return PlainTextResponse(str(exc), status_code=status.HTTP_404_NOT_FOUND)


@app.exception_handler(DuplicateInvoiceError)
async def duplicate_invoice_handler(request: Request, exc: DuplicateInvoiceError):
    return PlainTextResponse(str(exc), status_code=status.HTTP_409_CONFLICT)


@app.exception_handler(LinkedRecordCreationError)
async def linked_record_handler(request: Request, exc: LinkedRecordCreationError):
    return PlainTextResponse(str(exc), status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return PlainTextResponse(GENERIC_ERROR_MESSAGE, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


# ============================================
# HEALTH
# ============================================

@api_router.get("/health")
async def health_check():
    return {"status": "healthy"}


# ============================================
# PROJECTS
# ============================================

@api_router.get("/projects")
async def list_projects(
    store: EntityStore = Depends(get_store),
    current_user: dict = Depends(get_current_user)
):
    projects = await store.get_projects()
    return [serialize_doc(p) for p in projects]


@api_router.get("/projects/{project_id}")
async def get_project(
    project_id: str,
    store: EntityStore = Depends(get_store),
    current_user: dict = Depends(get_current_user)
):
    project = await store.get_project(project_id)
    if not project:
        raise EntityNotFoundError(PROJECTS, project_id)
    return serialize_doc(project)


@api_router.post("/projects", status_code=status.HTTP_201_CREATED)
async def create_project(
    project_data: ProjectCreate,
    store: EntityStore = Depends(get_store),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    project = await store.create_project(project_data.model_dump())

    await audit_service.log_action(
        module_name="PROJECTS",
        entity_type="PROJECT",
        entity_id=project["id"],
        action_type="CREATE",
        user_id=current_user["user_id"],
        project_id=project["id"],
        new_value=serialize_doc(project)
    )
    return serialize_doc(project)


@api_router.patch("/projects/{project_id}")
async def update_project(
    project_id: str,
    project_data: ProjectUpdate,
    store: EntityStore = Depends(get_store),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    old = await store.get_project(project_id)
    if not old:
        raise EntityNotFoundError(PROJECTS, project_id)

    updated = await store.update_project(project_id, project_data.model_dump(exclude_unset=True))
    if not updated:
        raise EntityNotFoundError(PROJECTS, project_id)

    await audit_service.log_action(
        module_name="PROJECTS",
        entity_type="PROJECT",
        entity_id=project_id,
        action_type="UPDATE",
        user_id=current_user["user_id"],
        project_id=project_id,
        old_value=serialize_doc(old),
        new_value=serialize_doc(updated)
    )
    return serialize_doc(updated)


@api_router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    store: EntityStore = Depends(get_store),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    old = await store.get_project(project_id)
    if not old or not await store.delete_project(project_id):
        raise EntityNotFoundError(PROJECTS, project_id)

    await audit_service.log_action(
        module_name="PROJECTS",
        entity_type="PROJECT",
        entity_id=project_id,
        action_type="DELETE",
        user_id=current_user["user_id"],
        project_id=project_id,
        old_value=serialize_doc(old)
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@api_router.get("/projects/{project_id}/advance-balance")
async def get_advance_balance(
    project_id: str,
    exclude_payment_id: Optional[str] = Query(default=None, alias="excludePaymentId"),
    calculator: AdvanceBalanceCalculator = Depends(get_advance_calculator),
    current_user: dict = Depends(get_current_user)
):
    """Remaining avans of the project, optionally ignoring the hakediş being edited"""
    balance = await calculator.remaining_advance(project_id, exclude_payment_id=exclude_payment_id)
    return balance.to_dict()


@api_router.get("/projects/{project_id}/expense-transactions")
async def get_selectable_expenses(
    project_id: str,
    payment_id: Optional[str] = Query(default=None, alias="paymentId"),
    engine: ProgressPaymentEngine = Depends(get_payment_engine),
    current_user: dict = Depends(get_current_user)
):
    """Gider transactions a hakediş of this project may cover"""
    transactions = await engine.selectable_transactions(project_id, payment_id=payment_id)
    return [serialize_doc(t) for t in transactions]


# ============================================
# BUDGET ITEMS
# ============================================

@api_router.get("/budget-items")
async def list_budget_items(
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    store: EntityStore = Depends(get_store),
    current_user: dict = Depends(get_current_user)
):
    items = await store.get_budget_items(project_id=project_id)
    return [serialize_doc(i) for i in items]


@api_router.post("/budget-items", status_code=status.HTTP_201_CREATED)
async def create_budget_item(
    item_data: BudgetItemCreate,
    store: EntityStore = Depends(get_store),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    if not await store.get_project(item_data.project_id):
        raise EntityNotFoundError(PROJECTS, item_data.project_id)

    item = await store.create_budget_item(item_data.model_dump())

    await audit_service.log_action(
        module_name="PROJECTS",
        entity_type="BUDGET_ITEM",
        entity_id=item["id"],
        action_type="CREATE",
        user_id=current_user["user_id"],
        project_id=item_data.project_id,
        new_value=serialize_doc(item)
    )
    return serialize_doc(item)


@api_router.patch("/budget-items/{item_id}")
async def update_budget_item(
    item_id: str,
    item_data: BudgetItemUpdate,
    store: EntityStore = Depends(get_store),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    old = await store.get_budget_item(item_id)
    if not old:
        raise EntityNotFoundError(BUDGET_ITEMS, item_id)

    updated = await store.update_budget_item(item_id, item_data.model_dump(exclude_unset=True, exclude_none=True))
    if not updated:
        raise EntityNotFoundError(BUDGET_ITEMS, item_id)

    await audit_service.log_action(
        module_name="PROJECTS",
        entity_type="BUDGET_ITEM",
        entity_id=item_id,
        action_type="UPDATE",
        user_id=current_user["user_id"],
        project_id=updated.get("project_id"),
        old_value=serialize_doc(old),
        new_value=serialize_doc(updated)
    )
    return serialize_doc(updated)


@api_router.delete("/budget-items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_budget_item(
    item_id: str,
    store: EntityStore = Depends(get_store),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    old = await store.get_budget_item(item_id)
    if not old or not await store.delete_budget_item(item_id):
        raise EntityNotFoundError(BUDGET_ITEMS, item_id)

    await audit_service.log_action(
        module_name="PROJECTS",
        entity_type="BUDGET_ITEM",
        entity_id=item_id,
        action_type="DELETE",
        user_id=current_user["user_id"],
        project_id=old.get("project_id"),
        old_value=serialize_doc(old)
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================
# AUDIT TRAIL
# ============================================

@api_router.get("/audit-logs")
async def get_audit_logs(
    entity_type: Optional[str] = Query(default=None, alias="entityType"),
    entity_id: Optional[str] = Query(default=None, alias="entityId"),
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    limit: int = Query(default=100, ge=1, le=1000),
    audit_service: AuditService = Depends(get_audit_service),
    current_user: dict = Depends(get_current_user)
):
    logs = await audit_service.get_audit_logs(
        entity_type=entity_type,
        entity_id=entity_id,
        project_id=project_id,
        limit=limit
    )
    return [serialize_doc(log) for log in logs]


app.include_router(api_router)
app.include_router(financial_router)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def create_store_indexes():
    await EntityStore(get_db()).create_indexes()


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
