"""In-memory expense ledger, optionally backed by the MongoDB collection."""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection

from models.expense import Expense, ExpenseDraft
from services import expenses_service
from utils.errors import NotFound

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Ledger:
    """
    Ordered collection of expenses, newest first by recorded_at.

    Owned by a single session; there is no locking. Expenses recorded at the same
    instant keep their insertion order (the later one first).
    """

    def __init__(self, clock: Callable[[], datetime] = _utc_now, id_factory: Callable[[], str] = _new_id):
        self._clock = clock
        self._id_factory = id_factory
        self._expenses: List[Expense] = []

    def __len__(self) -> int:
        return len(self._expenses)

    def __iter__(self) -> Iterator[Expense]:
        return iter(list(self._expenses))

    def __contains__(self, expense_id: str) -> bool:
        return self._index_of(expense_id) is not None

    @property
    def expenses(self) -> List[Expense]:
        return list(self._expenses)

    def _index_of(self, expense_id: str) -> Optional[int]:
        for index, expense in enumerate(self._expenses):
            if expense.id == expense_id:
                return index
        return None

    def get(self, expense_id: str) -> Optional[Expense]:
        index = self._index_of(expense_id)
        return self._expenses[index] if index is not None else None

    def add(self, draft: ExpenseDraft) -> Expense:
        """Assigns an id and recorded_at to the draft and puts it at the front."""
        now = self._clock()
        expense = Expense(
            id=self._id_factory(),
            recorded_at=now,
            created_at=now,
            updated_at=now,
            **draft.draft_fields(),
        )
        return self.prepend(expense)

    def prepend(self, expense: Expense) -> Expense:
        """Puts an already identified expense (e.g. one returned by the store) at the front."""
        self._expenses.insert(0, expense)
        return expense

    def replace(self, expense_id: str, draft: ExpenseDraft) -> Expense:
        """Overwrites the draft fields, keeping id, recorded_at and created_at. Raises NotFound."""
        index = self._index_of(expense_id)
        if index is None:
            raise NotFound(expense_id)
        current = self._expenses[index]
        updated = current.model_copy(update={**draft.draft_fields(), "updated_at": self._clock()})
        self._expenses[index] = updated
        return updated

    def sync(self, expense: Expense) -> Expense:
        """Stores the given version of an expense, replacing any local copy with the same id."""
        index = self._index_of(expense.id)
        if index is None:
            return self.prepend(expense)
        self._expenses[index] = expense
        return expense

    def remove(self, expense_id: str) -> bool:
        """Removes an expense. Unknown ids are a no-op and return False."""
        index = self._index_of(expense_id)
        if index is None:
            logger.debug(f"Remove requested for unknown expense {expense_id}, ignoring.")
            return False
        del self._expenses[index]
        return True

    def reset(self, expenses: Iterable[Expense]) -> None:
        """Replaces the contents, ordered newest first. Ties keep the given order."""
        self._expenses = sorted(expenses, key=lambda e: e.recorded_at, reverse=True)


class LedgerSession:
    """
    A session's ledger. With a collection every change is written to the store first
    and only mirrored locally once the write has succeeded; without one the ledger
    lives in memory only.
    """

    def __init__(self, ledger: Optional[Ledger] = None, collection: Optional[AsyncIOMotorCollection] = None):
        self.ledger = ledger if ledger is not None else Ledger()
        self.collection = collection

    @property
    def persistent(self) -> bool:
        return self.collection is not None

    async def refresh(self) -> List[Expense]:
        """Reloads from the store when there is one, then returns the local list."""
        if self.persistent:
            expenses = await expenses_service.get_all_expenses_from_db(self.collection)
            self.ledger.reset(expenses)
        return self.ledger.expenses

    async def add(self, draft: ExpenseDraft) -> Expense:
        if not self.persistent:
            return self.ledger.add(draft)
        expense = await expenses_service.insert_expense(self.collection, draft)
        return self.ledger.prepend(expense)

    async def replace(self, expense_id: str, draft: ExpenseDraft) -> Expense:
        if not self.persistent:
            return self.ledger.replace(expense_id, draft)
        expense = await expenses_service.update_expense(self.collection, expense_id, draft)
        return self.ledger.sync(expense)

    async def remove(self, expense_id: str) -> bool:
        """
        Store-backed sessions raise NotFound for unknown ids. In memory an unknown id
        is a no-op and False is returned.
        """
        if self.persistent:
            await expenses_service.delete_expense(self.collection, expense_id)
            self.ledger.remove(expense_id)
            return True
        return self.ledger.remove(expense_id)
