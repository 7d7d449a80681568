"""
Conversion between Student entities and the plain records kept in IndexedDB.

Stored layout (one record per student, keyed by "id"):

    {"id", "name", "birth_date", "nationality", "status",
     "records": [{"name", "score", "pass"}, ...],
     "credentials": [{"title", "date", "note"}, ...]}
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional

from .models import Credential, Student, SubjectRecord


def flatten(student: Student) -> dict:
    """
    Plain-data copy of a student, safe to store.

    Nested lists are rebuilt, so later changes to the entity never reach a
    record that was already handed to storage.
    """
    return {
        "id": student.id,
        "name": student.name,
        "birth_date": student.birth_date,
        "nationality": student.nationality,
        "status": student.status,
        "records": [
            {"name": r.name, "score": r.score, "pass": r.passed}
            for r in student.records
        ],
        "credentials": [
            {"title": c.title, "date": c.date, "note": c.note}
            for c in student.credentials
        ],
    }


def _coerce_pass(value: Any) -> bool:
    # older records may carry the flag as text
    if isinstance(value, str):
        return value == "true"
    return bool(value)


def rehydrate_one(record: Mapping[str, Any]) -> Student:
    student = Student(
        record.get("id"),
        record.get("name"),
        record.get("birth_date"),
        record.get("nationality"),
    )
    student.status = record.get("status")
    student.records = [
        SubjectRecord(r.get("name"), r.get("score"), _coerce_pass(r.get("pass")))
        for r in record.get("records") or []
    ]
    student.credentials = [
        Credential(c.get("title"), c.get("date"), c.get("note"))
        for c in record.get("credentials") or []
    ]
    return student


def rehydrate(records: Optional[Iterable[Mapping[str, Any]]]) -> List[Student]:
    """Rebuild Student entities from stored records."""
    return [rehydrate_one(record) for record in records or []]
