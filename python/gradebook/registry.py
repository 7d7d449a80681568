"""
Actions the instructor and student views call into.

The Registry keeps the in-memory student list in step with storage. Most
mutations persist in the background: they return the scheduled save task
right away, and a failed save is reported on ui_log rather than raised
into the caller. Await flush() to know every pending save has finished.
"""

from __future__ import annotations

import asyncio
import functools
from typing import List, Optional, Set

from . import ui_log
from .models import ACTIVE, INACTIVE, Credential, Student, SubjectRecord
from .store import StudentStore


class DuplicateStudentError(ValueError):
    """Another student already uses this id."""


class Registry:
    def __init__(self, store: Optional[StudentStore] = None):
        self.store = store if store is not None else StudentStore()
        self.students: List[Student] = []
        self.selected: Optional[Student] = None
        self._pending: Set[asyncio.Future] = set()

    async def load(self) -> List[Student]:
        self.students = await self.store.load_all()
        if self.selected is not None:
            self.selected = self.find(self.selected.id)
        return self.students

    def find(self, student_id: str) -> Optional[Student]:
        for student in self.students:
            if student.id == student_id:
                return student
        return None

    def _require(self, student_id: str) -> Student:
        student = self.find(student_id)
        if student is None:
            raise KeyError(f"No student with id {student_id!r}")
        return student

    def select(self, student_id: Optional[str]) -> Optional[Student]:
        self.selected = self.find(student_id) if student_id else None
        return self.selected

    # Background persistence

    def _schedule(self, coro, action: str) -> asyncio.Future:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(functools.partial(self._finished, action))
        return task

    def _finished(self, action: str, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        ex = task.exception()
        if ex is not None:
            ui_log.emit(f"Error trying to {action}: {ex}", "fail")

    def persist(self, student: Student) -> asyncio.Future:
        """Schedule a save of the student without waiting for it."""
        return self._schedule(self.store.save(student), f"save student {student.id}")

    async def flush(self) -> None:
        """Wait for every scheduled save or delete."""
        while self._pending:
            await asyncio.wait(list(self._pending))

    # Commands

    def register(
        self, name: str, student_id: str, birth_date: str, nationality: str
    ) -> Student:
        """Add an active student and schedule its save."""
        if self.find(student_id) is not None:
            raise DuplicateStudentError(f"Student id {student_id!r} already registered")
        student = Student(student_id, name, birth_date, nationality)
        student.activate()
        self.students.append(student)
        self.persist(student)
        return student

    async def edit(
        self,
        student_id: str,
        *,
        name: Optional[str] = None,
        new_id: Optional[str] = None,
        birth_date: Optional[str] = None,
        nationality: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Optional[Student]:
        """
        Update a student's details, then reload everybody from storage.

        Empty values keep the current ones. A changed id drops the record
        stored under the old id first. ``status`` must be "active" or
        "inactive" (any case) to take effect.
        """
        student = self._require(student_id)
        if new_id and new_id != student.id:
            if self.find(new_id) is not None:
                raise DuplicateStudentError(f"Student id {new_id!r} already registered")
            old_id = student.id
            await asyncio.wait(
                [self._schedule(self.store.delete(old_id), f"delete student {old_id}")]
            )
            student.id = new_id

        student.name = name or student.name
        student.birth_date = birth_date or student.birth_date
        student.nationality = nationality or student.nationality

        status = (status or "").strip().lower()
        if status == ACTIVE:
            student.activate()
        elif status == INACTIVE:
            student.deactivate()

        await asyncio.wait([self.persist(student)])
        await self.load()
        return self.find(student.id)

    async def remove(self, student_id: str) -> None:
        """Delete a student from storage and memory; clears the selection."""
        student = self._require(student_id)
        await asyncio.wait(
            [self._schedule(self.store.delete(student_id), f"delete student {student_id}")]
        )
        self.students.remove(student)
        self.selected = None

    def add_record(
        self, student_id: str, subject: str, score: float, passed: bool
    ) -> asyncio.Future:
        student = self._require(student_id)
        student.add_record(SubjectRecord(subject, score, passed))
        return self.persist(student)

    def edit_score(self, student_id: str, index: int, score: float) -> asyncio.Future:
        """Correct a grade; the pass flag follows the new score."""
        student = self._require(student_id)
        student.records[index].set_score(float(score))
        return self.persist(student)

    def add_credential(
        self, student_id: str, title: str, date: str, note: Optional[str] = None
    ) -> asyncio.Future:
        student = self._require(student_id)
        student.add_credential(Credential(title, date, note or None))
        return self.persist(student)
