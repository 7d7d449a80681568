# -*- encoding: utf-8 -*-
"""
suite.py - cooperative check runner for live storage in the browser.

Checks are async callables queued as (name, func, args) entries; an entry
whose func is None is a section header. SuiteDoer runs one check per hio
scheduling cycle, as an asyncio task it polls until done, and WebDoist drives
the hio Doist from asyncio, yielding to the event loop between cycles so
the page stays responsive.

Usage in PyScript:
    from gradebook.suite import run_smoke_suite

    results = await run_smoke_suite()
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from hio.base import doing

from . import ui_log
from .models import Credential, Student, SubjectRecord
from .store import StudentStore

# (name, function, args); function None marks a section header
CheckEntry = Tuple[str, Optional[Callable[..., Awaitable[Any]]], Tuple[Any, ...]]

SMOKE_ID = "__smoke__"


def log(msg: str, css_class: str = "info", run_id: Optional[str] = None):
    """Emit a structured log entry."""
    ui_log.emit(msg, css_class, run_id=run_id)


class SuiteResults:
    """Tracks check pass/fail/error counts."""

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        self.passed = 0
        self.failed = 0
        self.errors = 0
        self.failures: List[Tuple[str, str]] = []
        self.error_list: List[Tuple[str, str]] = []

    @property
    def ok(self) -> bool:
        return self.failed == 0 and self.errors == 0

    def record_pass(self, name: str):
        self.passed += 1
        log(f"  PASS: {name}", "success", self.run_id)

    def record_fail(self, name: str, msg: str):
        self.failed += 1
        self.failures.append((name, msg))
        log(f"  FAIL: {name}", "fail", self.run_id)
        log(f"    AssertionError: {msg}", "fail", self.run_id)

    def record_error(self, name: str, msg: str):
        self.errors += 1
        self.error_list.append((name, msg))
        log(f"  ERROR: {name}", "fail", self.run_id)
        log(f"    {msg}", "fail", self.run_id)

    def print_summary(self):
        total = self.passed + self.failed + self.errors
        log("=" * 64, run_id=self.run_id)
        log("SUMMARY", run_id=self.run_id)
        log("=" * 64, run_id=self.run_id)
        log(f"Total:  {total}", run_id=self.run_id)
        log(f"Passed: {self.passed}", "success" if self.passed else "info", self.run_id)
        log(f"Failed: {self.failed}", "fail" if self.failed else "info", self.run_id)
        log(f"Errors: {self.errors}", "fail" if self.errors else "info", self.run_id)
        log("-" * 64, run_id=self.run_id)
        if self.ok:
            log("ALL CHECKS PASSED!", "success", self.run_id)
        else:
            for name, msg in self.failures + self.error_list:
                log(f"  {name}: {msg}", "fail", self.run_id)


class SuiteDoer(doing.Doer):
    """
    Doer that runs queued async checks one at a time.

    Each recur() either polls the running check or starts the next one, then
    hands control back to the scheduler.

    Parameters:
        queue: List of (name, func, args) entries
        title: Heading logged when the run starts
        run_id: Tag attached to every log entry of this run
    """

    def __init__(
        self,
        queue: List[CheckEntry],
        title: str = "Check Suite",
        run_id: Optional[str] = None,
        **kwa,
    ):
        super().__init__(**kwa)
        self.queue = list(queue)
        self.title = title
        self.results = SuiteResults(run_id)
        self.index = 0
        self._task: Optional[asyncio.Future] = None
        self._label = ""

    def enter(self, **kwa):
        log("=" * 64, run_id=self.results.run_id)
        log(self.title, run_id=self.results.run_id)
        log("=" * 64, run_id=self.results.run_id)
        checks = sum(1 for _, func, _ in self.queue if func is not None)
        log(f"Loaded {checks} checks", run_id=self.results.run_id)

    def recur(self, tyme):
        if self._task is not None:
            if not self._task.done():
                return False
            self._record(self._label, self._task)
            self._task = None

        if self.index >= len(self.queue):
            self.results.print_summary()
            return True

        name, func, args = self.queue[self.index]
        self.index += 1

        if func is None:
            log("", run_id=self.results.run_id)
            log(name, run_id=self.results.run_id)
            log("-" * 32, run_id=self.results.run_id)
            return False

        self._label = f"{name}({', '.join(str(a) for a in args)})" if args else name
        self._task = asyncio.ensure_future(func(*args))
        return False

    def exit(self, **kwa):
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _record(self, label: str, task: asyncio.Future):
        if task.cancelled():
            self.results.record_error(label, "cancelled")
            return
        ex = task.exception()
        if ex is None:
            self.results.record_pass(label)
        elif isinstance(ex, AssertionError):
            self.results.record_fail(label, str(ex))
        else:
            self.results.record_error(label, f"{type(ex).__name__}: {ex}")


class WebDoist:
    """
    Browser-compatible wrapper around hio.Doist.

    Uses asyncio.sleep() instead of time.sleep() to yield to the
    JavaScript event loop between scheduling cycles.
    """

    def __init__(self, real=False, limit=None, doers=None, tock=0.03125):
        # inner Doist runs with real=False, timing is handled here
        self.doist = doing.Doist(real=False, doers=doers, tock=tock, limit=limit)
        self.real = real
        self.limit = limit
        self.tock = tock

    async def do(self):
        """Run recur() cycles until every doer is done or the limit passes."""
        start_time = asyncio.get_running_loop().time()
        try:
            self.doist.enter()
            while self.doist.deeds:
                self.doist.recur()
                await asyncio.sleep(self.tock if self.real else 0)
                if self.limit is not None:
                    elapsed = asyncio.get_running_loop().time() - start_time
                    if elapsed >= self.limit:
                        break
            self.doist.done = True
        except Exception:
            self.doist.done = False
            raise
        finally:
            self.doist.exit()

    @property
    def done(self):
        return self.doist.done


async def run_suite(
    queue: List[CheckEntry],
    title: str = "Check Suite",
    *,
    real: bool = False,
    limit: Optional[float] = None,
    run_id: Optional[str] = None,
) -> SuiteResults:
    """Run queued checks cooperatively and return their results."""
    doer = SuiteDoer(queue, title=title, run_id=run_id)
    await WebDoist(real=real, limit=limit, doers=[doer]).do()
    return doer.results


# =============================================================================
# SMOKE CHECKS
# =============================================================================


def _smoke_student() -> Student:
    student = Student(SMOKE_ID, "Smoke Check", "2000-01-01", "N/A")
    student.activate()
    student.add_record(SubjectRecord("Math", 8, True))
    student.add_record(SubjectRecord.graded("History", 4))
    student.add_credential(Credential("Cert", "2024-01-01"))
    return student


async def check_save_and_load(store: StudentStore):
    """A saved student comes back with its records and credentials."""
    await store.save(_smoke_student())
    loaded = [s for s in await store.load_all() if s.id == SMOKE_ID]
    assert len(loaded) == 1, f"Got {len(loaded)} smoke students"
    student = loaded[0]
    assert student.is_active(), f"Got status {student.status!r}"
    assert [r.passed for r in student.records] == [True, False], f"Got {student.records!r}"
    assert student.credentials[0].note is None, f"Got {student.credentials!r}"


async def check_overwrite(store: StudentStore):
    """The last save under an id wins."""
    student = _smoke_student()
    student.name = "Smoke Check Renamed"
    await store.save(student)
    loaded = await store.get(SMOKE_ID)
    assert loaded is not None, "Smoke student missing"
    assert loaded.name == student.name, f"Got {loaded.name!r}"


async def check_delete(store: StudentStore):
    """Deleting removes the record; deleting again is harmless."""
    await store.delete(SMOKE_ID)
    assert await store.get(SMOKE_ID) is None, "Smoke student still stored"
    await store.delete(SMOKE_ID)


def smoke_checks(store: StudentStore) -> List[CheckEntry]:
    return [
        ("=== STUDENT STORE ===", None, ()),
        ("store.check_save_and_load", functools.partial(check_save_and_load, store), ()),
        ("store.check_overwrite", functools.partial(check_overwrite, store), ()),
        ("store.check_delete", functools.partial(check_delete, store), ()),
    ]


async def run_smoke_suite(store: Optional[StudentStore] = None) -> SuiteResults:
    """Run the smoke checks against live storage."""
    ui_log.clear()
    store = store if store is not None else StudentStore()
    return await run_suite(smoke_checks(store), title="Academic Records Smoke Suite")


def schedule_smoke_suite(event=None) -> asyncio.Future:
    """
    Button click handler - schedules the smoke suite.
    """
    return asyncio.ensure_future(run_smoke_suite())
