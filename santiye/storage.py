"""
ENTITY STORE

Keyed get/create/update/delete for the core entities on MongoDB (motor).
Documents keep snake_case keys; ``_id`` is exposed as a string ``id``.
Every method takes an optional ``session`` so callers can group writes
under one Mongo transaction via ``EntityStore.transaction()``.
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ReturnDocument, ASCENDING
from bson import ObjectId
from bson.errors import InvalidId
from contextlib import asynccontextmanager
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any, List
import logging

from santiye.core.financial_precision import to_money_str

logger = logging.getLogger(__name__)

PROJECTS = "projects"
TRANSACTIONS = "transactions"
INVOICES = "invoices"
PROGRESS_PAYMENTS = "progress_payments"
BUDGET_ITEMS = "budget_items"

# Human readable names used in not-found messages
ENTITY_LABELS = {
    PROJECTS: "Proje",
    TRANSACTIONS: "İşlem",
    INVOICES: "Fatura",
    PROGRESS_PAYMENTS: "Hakediş",
    BUDGET_ITEMS: "Bütçe kalemi",
}


class EntityNotFoundError(Exception):
    """Raised when an update/delete/lookup target does not exist"""
    def __init__(self, collection: str, entity_id: str):
        self.collection = collection
        self.entity_id = entity_id
        self.label = ENTITY_LABELS.get(collection, collection)
        super().__init__(f"{self.label} bulunamadı")


def parse_object_id(entity_id: Any) -> Optional[ObjectId]:
    """ObjectId for a string id, or None when the id is malformed"""
    if isinstance(entity_id, ObjectId):
        return entity_id
    try:
        return ObjectId(str(entity_id))
    except (InvalidId, TypeError):
        return None


def to_document(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert validated payload values into BSON-friendly values"""
    result = {}
    for key, value in data.items():
        if isinstance(value, Enum):
            result[key] = value.value
        elif isinstance(value, Decimal):
            result[key] = to_money_str(value)
        elif isinstance(value, date) and not isinstance(value, datetime):
            result[key] = value.isoformat()
        elif isinstance(value, list):
            result[key] = [to_document({"v": item})["v"] for item in value]
        else:
            result[key] = value
    return result


def from_document(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    record = dict(doc)
    record["id"] = str(record.pop("_id"))
    return record


class EntityStore:
    """MongoDB-backed persistence for projects, transactions, invoices, hakediş and budget items"""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        client: Optional[AsyncIOMotorClient] = None,
        use_transactions: bool = False
    ):
        self.db = db
        self.client = client
        self.use_transactions = use_transactions and client is not None

    @asynccontextmanager
    async def transaction(self):
        """
        Yield a session running inside a Mongo transaction, or None when
        transactions are disabled (standalone server, tests).
        The transaction aborts if the block raises.
        """
        if not self.use_transactions:
            yield None
            return
        async with await self.client.start_session() as session:
            async with session.start_transaction():
                yield session

    async def create_indexes(self):
        """Lookup indexes used by duplicate checks and back-reference scans"""
        try:
            await self.db[TRANSACTIONS].create_index([("project_id", ASCENDING)])
            await self.db[TRANSACTIONS].create_index([("invoice_number", ASCENDING)])
            await self.db[TRANSACTIONS].create_index([("progress_payment_id", ASCENDING)])
            await self.db[INVOICES].create_index([("invoice_number", ASCENDING)])
            await self.db[PROGRESS_PAYMENTS].create_index([("project_id", ASCENDING)])
            await self.db[BUDGET_ITEMS].create_index([("project_id", ASCENDING)])
            logger.info("Entity store indexes ensured")
        except Exception as e:
            # Index may already exist with different options
            logger.warning(f"Index creation result: {str(e)}")

    # =========================================================================
    # GENERIC KEYED OPERATIONS
    # =========================================================================

    async def _list(self, collection: str, query: Optional[Dict[str, Any]] = None, session=None) -> List[Dict[str, Any]]:
        docs = await self.db[collection].find(query or {}, session=session).to_list(length=None)
        return [from_document(doc) for doc in docs]

    async def _get(self, collection: str, entity_id: str, session=None) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(entity_id)
        if oid is None:
            return None
        doc = await self.db[collection].find_one({"_id": oid}, session=session)
        return from_document(doc)

    async def _create(self, collection: str, data: Dict[str, Any], session=None) -> Dict[str, Any]:
        doc = to_document(data)
        doc["created_at"] = datetime.utcnow()
        result = await self.db[collection].insert_one(doc, session=session)
        doc["_id"] = result.inserted_id
        logger.debug(f"Created {collection}:{result.inserted_id}")
        return from_document(doc)

    async def _update(self, collection: str, entity_id: str, changes: Dict[str, Any], session=None) -> Optional[Dict[str, Any]]:
        oid = parse_object_id(entity_id)
        if oid is None:
            return None
        update = to_document(changes)
        update["updated_at"] = datetime.utcnow()
        doc = await self.db[collection].find_one_and_update(
            {"_id": oid},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
            session=session
        )
        return from_document(doc)

    async def _delete(self, collection: str, entity_id: str, session=None) -> bool:
        oid = parse_object_id(entity_id)
        if oid is None:
            return False
        result = await self.db[collection].delete_one({"_id": oid}, session=session)
        return result.deleted_count > 0

    # =========================================================================
    # PROJECTS
    # =========================================================================

    async def get_projects(self, session=None):
        return await self._list(PROJECTS, session=session)

    async def get_project(self, project_id: str, session=None):
        return await self._get(PROJECTS, project_id, session=session)

    async def create_project(self, data: Dict[str, Any], session=None):
        return await self._create(PROJECTS, data, session=session)

    async def update_project(self, project_id: str, changes: Dict[str, Any], session=None):
        return await self._update(PROJECTS, project_id, changes, session=session)

    async def delete_project(self, project_id: str, session=None) -> bool:
        return await self._delete(PROJECTS, project_id, session=session)

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def get_transactions(
        self,
        project_id: Optional[str] = None,
        type: Optional[str] = None,
        progress_payment_id: Optional[str] = None,
        session=None
    ):
        query = {}
        if project_id:
            query["project_id"] = project_id
        if type:
            query["type"] = type
        if progress_payment_id:
            query["progress_payment_id"] = progress_payment_id
        return await self._list(TRANSACTIONS, query, session=session)

    async def get_transaction(self, transaction_id: str, session=None):
        return await self._get(TRANSACTIONS, transaction_id, session=session)

    async def find_transaction_by_invoice_number(self, invoice_number: str, session=None):
        doc = await self.db[TRANSACTIONS].find_one({"invoice_number": invoice_number}, session=session)
        return from_document(doc)

    async def create_transaction(self, data: Dict[str, Any], session=None):
        return await self._create(TRANSACTIONS, data, session=session)

    async def update_transaction(self, transaction_id: str, changes: Dict[str, Any], session=None):
        return await self._update(TRANSACTIONS, transaction_id, changes, session=session)

    async def delete_transaction(self, transaction_id: str, session=None) -> bool:
        return await self._delete(TRANSACTIONS, transaction_id, session=session)

    # =========================================================================
    # INVOICES
    # =========================================================================

    async def get_invoices(self, project_id: Optional[str] = None, type: Optional[str] = None, session=None):
        query = {}
        if project_id:
            query["project_id"] = project_id
        if type:
            query["type"] = type
        return await self._list(INVOICES, query, session=session)

    async def get_invoice(self, invoice_id: str, session=None):
        return await self._get(INVOICES, invoice_id, session=session)

    async def find_invoice_by_number(self, invoice_number: str, session=None):
        doc = await self.db[INVOICES].find_one({"invoice_number": invoice_number}, session=session)
        return from_document(doc)

    async def create_invoice(self, data: Dict[str, Any], session=None):
        return await self._create(INVOICES, data, session=session)

    async def update_invoice(self, invoice_id: str, changes: Dict[str, Any], session=None):
        return await self._update(INVOICES, invoice_id, changes, session=session)

    async def delete_invoice(self, invoice_id: str, session=None) -> bool:
        return await self._delete(INVOICES, invoice_id, session=session)

    # =========================================================================
    # PROGRESS PAYMENTS (Hakediş)
    # =========================================================================

    async def get_progress_payments(self, project_id: Optional[str] = None, session=None):
        query = {"project_id": project_id} if project_id else {}
        payments = await self._list(PROGRESS_PAYMENTS, query, session=session)
        return sorted(payments, key=lambda p: (p.get("project_id", ""), p.get("payment_number") or 0))

    async def get_progress_payment(self, payment_id: str, session=None):
        return await self._get(PROGRESS_PAYMENTS, payment_id, session=session)

    async def create_progress_payment(self, data: Dict[str, Any], session=None):
        return await self._create(PROGRESS_PAYMENTS, data, session=session)

    async def update_progress_payment(self, payment_id: str, changes: Dict[str, Any], session=None):
        return await self._update(PROGRESS_PAYMENTS, payment_id, changes, session=session)

    async def delete_progress_payment(self, payment_id: str, session=None) -> bool:
        return await self._delete(PROGRESS_PAYMENTS, payment_id, session=session)

    # =========================================================================
    # BUDGET ITEMS
    # =========================================================================

    async def get_budget_items(self, project_id: Optional[str] = None, session=None):
        query = {"project_id": project_id} if project_id else {}
        return await self._list(BUDGET_ITEMS, query, session=session)

    async def get_budget_item(self, item_id: str, session=None):
        return await self._get(BUDGET_ITEMS, item_id, session=session)

    async def create_budget_item(self, data: Dict[str, Any], session=None):
        return await self._create(BUDGET_ITEMS, data, session=session)

    async def update_budget_item(self, item_id: str, changes: Dict[str, Any], session=None):
        return await self._update(BUDGET_ITEMS, item_id, changes, session=session)

    async def delete_budget_item(self, item_id: str, session=None) -> bool:
        return await self._delete(BUDGET_ITEMS, item_id, session=session)
