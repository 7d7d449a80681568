"""
Student persistence on the shared IndexedDB connection.

Each call runs in its own transaction on the students store and returns
only after the transaction has completed. Errors propagate unchanged,
except in load_all(), which reports them on ui_log and returns no students.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Iterable, List, Optional

from . import ui_log
from .connection import ConnectionManager, get_manager
from .idb import IDBTransactionMode, TransactionHandle
from .models import Student
from .rehydrate import flatten, rehydrate, rehydrate_one


class StudentStore:
    def __init__(self, manager: Optional[ConnectionManager] = None):
        self.manager = manager if manager is not None else get_manager()

    @property
    def store_name(self) -> str:
        return self.manager.config.store_name

    async def begin(
        self, mode: IDBTransactionMode = IDBTransactionMode.READONLY
    ) -> TransactionHandle:
        db = await self.manager.connect()
        return db.transaction(self.store_name, mode)

    async def load_all(self) -> List[Student]:
        """Every stored student, or an empty list if storage fails."""
        try:
            tx = await self.begin()
            records = await tx.store.get_all()
            await tx.done
        except Exception as ex:
            ui_log.emit(f"Error loading students from IndexedDB: {ex}", "fail")
            return []
        return rehydrate(records)

    async def get(self, student_id: str) -> Optional[Student]:
        tx = await self.begin()
        async with tx:
            record = await tx.store.get(student_id)
        return rehydrate_one(record) if record is not None else None

    def save(self, student: Student) -> Awaitable[None]:
        """
        Insert or overwrite the student's record.

        The record is flattened here, so the write stores the student as it
        is now even if the returned awaitable runs later.
        """
        return self._write([flatten(student)])

    def save_all(self, students: Iterable[Student]) -> Awaitable[None]:
        """Write several students atomically, in one transaction."""
        return self._write([flatten(student) for student in students])

    async def _write(self, records: List[dict]) -> None:
        tx = await self.begin(IDBTransactionMode.READWRITE)
        store = tx.store
        results = await asyncio.gather(
            *[store.put(record) for record in records], return_exceptions=True
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            # a put that threw synchronously leaves the transaction live
            if not tx.done.done():
                tx.abort()
            raise errors[0]
        await tx.done

    async def delete(self, student_id: str) -> None:
        """Remove a student; removing an unknown id is not an error."""
        tx = await self.begin(IDBTransactionMode.READWRITE)
        async with tx:
            await tx.store.delete(student_id)

    async def count(self) -> int:
        tx = await self.begin()
        async with tx:
            total = await tx.store.count()
        return int(total)

    async def clear(self) -> None:
        tx = await self.begin(IDBTransactionMode.READWRITE)
        async with tx:
            await tx.store.clear()
