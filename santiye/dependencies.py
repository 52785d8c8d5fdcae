"""
Shared FastAPI dependencies: database handle and the services built on it.
Tests override ``get_db`` (and ``get_current_user``) through
``app.dependency_overrides``.
"""
from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from santiye.audit_service import AuditService
from santiye.config import MONGO_URL, DB_NAME, MONGO_TRANSACTIONS, DEFAULT_INVOICE_TAX_RATE
from santiye.core.advance_balance import AdvanceBalanceCalculator
from santiye.core.linking_coordinator import LinkingCoordinator
from santiye.core.progress_payment_engine import ProgressPaymentEngine
from santiye.storage import EntityStore

# MongoDB connection (lazy; nothing is contacted until the first operation)
client = AsyncIOMotorClient(MONGO_URL)


def get_db() -> AsyncIOMotorDatabase:
    return client[DB_NAME]


def get_store(db: AsyncIOMotorDatabase = Depends(get_db)) -> EntityStore:
    return EntityStore(db, client=client, use_transactions=MONGO_TRANSACTIONS)


def get_audit_service(db: AsyncIOMotorDatabase = Depends(get_db)) -> AuditService:
    return AuditService(db)


def get_advance_calculator(store: EntityStore = Depends(get_store)) -> AdvanceBalanceCalculator:
    return AdvanceBalanceCalculator(store)


def get_payment_engine(
    store: EntityStore = Depends(get_store),
    advance_calculator: AdvanceBalanceCalculator = Depends(get_advance_calculator)
) -> ProgressPaymentEngine:
    return ProgressPaymentEngine(store, advance_calculator)


def get_linking_coordinator(
    store: EntityStore = Depends(get_store),
    payment_engine: ProgressPaymentEngine = Depends(get_payment_engine)
) -> LinkingCoordinator:
    return LinkingCoordinator(store, payment_engine, default_tax_rate=DEFAULT_INVOICE_TAX_RATE)
