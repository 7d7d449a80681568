"""
Academic record entities.

Plain data classes with no storage awareness; gradebook.rehydrate is their
only bridge to IndexedDB.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

PASS_THRESHOLD = 6

ACTIVE = "active"
INACTIVE = "inactive"


@dataclass
class SubjectRecord:
    """
    A graded subject.

    ``passed`` is taken as given on construction. graded() and set_score()
    derive it from the score instead.
    """

    name: str
    score: float
    passed: bool

    @classmethod
    def graded(cls, name: str, score: float) -> "SubjectRecord":
        return cls(name, score, score >= PASS_THRESHOLD)

    def set_score(self, score: float) -> None:
        self.score = score
        self.passed = score >= PASS_THRESHOLD


@dataclass
class Credential:
    """A degree, diploma or certificate, with an optional distinction."""

    title: str
    date: str
    note: Optional[str] = None


@dataclass
class Student:
    """
    A student and their academic history.

    New students start inactive; registration activates them.
    """

    id: str
    name: str
    birth_date: str
    nationality: str
    status: str = INACTIVE
    records: List[SubjectRecord] = field(default_factory=list)
    credentials: List[Credential] = field(default_factory=list)

    def activate(self) -> None:
        self.status = ACTIVE

    def deactivate(self) -> None:
        self.status = INACTIVE

    def is_active(self) -> bool:
        return self.status == ACTIVE

    def add_record(self, record: SubjectRecord) -> None:
        self.records.append(record)

    def add_credential(self, credential: Credential) -> None:
        self.credentials.append(credential)

    def average(self) -> float:
        """Mean score rounded to 2 decimals, 0 without records."""
        if not self.records:
            return 0
        return round(sum(r.score for r in self.records) / len(self.records), 2)

    def passed_count(self) -> int:
        return sum(1 for r in self.records if r.passed)

    def failed_count(self) -> int:
        return sum(1 for r in self.records if not r.passed)
