"""Service layer for reading and writing expenses in the MongoDB collection."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorCollection # Type hint for collection
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from models.expense import Expense, ExpenseDraft
from utils.errors import ExternalCallError, NotFound, ValidationError
from utils.field_mapper import (
    CREATED_AT_FIELD,
    ID_FIELD,
    RECORDED_AT_FIELD,
    UPDATED_AT_FIELD,
    from_store_row,
    to_store_row,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def id_filter(expense_id: str) -> Dict[str, Any]:
    """Ids assigned by MongoDB are ObjectIds, locally generated ones are plain strings."""
    if ObjectId.is_valid(expense_id):
        return {ID_FIELD: {"$in": [ObjectId(expense_id), expense_id]}}
    return {ID_FIELD: expense_id}


# --- Database Interaction Functions (Depend on collection passed from the caller) ---

async def get_all_expenses_from_db(collection: AsyncIOMotorCollection, sort_by: str = RECORDED_AT_FIELD, sort_order: int = -1) -> List[Expense]:
    """Fetches all expenses from the provided MongoDB collection, newest first by default."""
    logger.info(f"Fetching all expenses from collection '{collection.name}', sorting by {sort_by} ({'desc' if sort_order == -1 else 'asc'})...")
    expenses = []
    try:
        cursor = collection.find().sort(sort_by, sort_order)
        async for doc in cursor:
            try:
                expenses.append(from_store_row(doc))
            except ValidationError as e:
                # Skip rows that cannot be represented, they are never shown with made-up values
                logger.error(f"Data validation error for document ID {doc.get(ID_FIELD, 'N/A')}: {e}")
                continue
        logger.info(f"Fetched {len(expenses)} expenses successfully.")
    except PyMongoError as e:
        logger.error(f"Database error fetching expenses: {e}")
        raise ExternalCallError(f"Failed to fetch expenses: {e}") from e
    return expenses


async def insert_expense(collection: AsyncIOMotorCollection, draft: ExpenseDraft, now: Optional[datetime] = None) -> Expense:
    """Inserts a draft and returns the stored expense with the id assigned by the database."""
    now = now or utc_now()
    row = to_store_row(draft)
    row[RECORDED_AT_FIELD] = now.isoformat()
    row[CREATED_AT_FIELD] = now.isoformat()
    row[UPDATED_AT_FIELD] = now.isoformat()

    logger.info(f"Inserting expense for vendor '{draft.vendor}' into '{collection.name}'...")
    try:
        result = await collection.insert_one(row)
    except PyMongoError as e:
        logger.error(f"Error inserting expense: {e}")
        raise ExternalCallError(f"Failed to insert expense: {e}") from e

    row[ID_FIELD] = result.inserted_id
    expense = from_store_row(row)
    logger.info(f"Inserted expense {expense.id}.")
    return expense


async def update_expense(collection: AsyncIOMotorCollection, expense_id: str, draft: ExpenseDraft, now: Optional[datetime] = None) -> Expense:
    """
    Overwrites the draft fields of an expense. The id and recorded date are never touched.
    Raises NotFound if no row has this id.
    """
    now = now or utc_now()
    changes = to_store_row(draft)
    changes[UPDATED_AT_FIELD] = now.isoformat()

    logger.info(f"Updating expense {expense_id}...")
    try:
        doc = await collection.find_one_and_update(
            id_filter(expense_id),
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Error updating expense {expense_id}: {e}")
        raise ExternalCallError(f"Failed to update expense: {e}") from e

    if doc is None:
        logger.warning(f"Update requested for unknown expense {expense_id}.")
        raise NotFound(expense_id)
    return from_store_row(doc)


async def delete_expense(collection: AsyncIOMotorCollection, expense_id: str) -> None:
    """Deletes one expense. Raises NotFound if no row has this id."""
    logger.info(f"Deleting expense {expense_id}...")
    try:
        result = await collection.delete_one(id_filter(expense_id))
    except PyMongoError as e:
        logger.error(f"Error deleting expense {expense_id}: {e}")
        raise ExternalCallError(f"Failed to delete expense: {e}") from e

    if result.deleted_count == 0:
        logger.warning(f"Delete requested for unknown expense {expense_id}.")
        raise NotFound(expense_id)
    logger.info(f"Deleted expense {expense_id}.")
