# -*- encoding: utf-8 -*-
"""
Shared IndexedDB connection for the academic records database.

Every storage call goes through one connection. The first caller triggers
the open request; anyone arriving while it is in flight, or afterwards,
gets the same future, so the database is opened once per process.

Usage:
    from gradebook.connection import get_manager

    db = await get_manager().connect()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .idb import DatabaseHandle, open_database

DB_NAME = "AcademicRecordsDB"
DB_VERSION = 1
STORE_NAME = "students"
KEY_PATH = "id"


@dataclass(frozen=True)
class StoreConfig:
    """Where student records live."""

    name: str = DB_NAME
    version: int = DB_VERSION
    store_name: str = STORE_NAME
    key_path: str = KEY_PATH


class ConnectionManager:
    """
    Owns the single connection to the records database.

    Args:
        config: Database name/version and object store layout
        factory: IDBFactory to open with (defaults to the browser's)
        blocked: Observer for blocked version changes
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        *,
        factory: Any = None,
        blocked: Optional[Callable[[Any], None]] = None,
    ):
        self.config = config if config is not None else StoreConfig()
        self.factory = factory
        self.blocked = blocked
        self._pending: Optional[asyncio.Future] = None

    def upgrade(self, db: DatabaseHandle, old_version: int, new_version: int) -> None:
        """Create the students store on first open or after a version bump."""
        if not db.contains(self.config.store_name):
            db.create_object_store(self.config.store_name, key_path=self.config.key_path)

    def connect(self) -> asyncio.Future:
        """Future for the shared DatabaseHandle; the open runs once."""
        if self._pending is None:
            self._pending = asyncio.ensure_future(
                open_database(
                    self.config.name,
                    self.config.version,
                    upgrade=self.upgrade,
                    blocked=self.blocked,
                    factory=self.factory,
                )
            )
            self._pending.add_done_callback(self._settled)
        return self._pending

    def _settled(self, future: asyncio.Future) -> None:
        # a failed open is not cached, the next caller opens afresh
        if future.cancelled() or future.exception() is not None:
            if self._pending is future:
                self._pending = None

    @property
    def connected(self) -> bool:
        pending = self._pending
        return (
            pending is not None
            and pending.done()
            and not pending.cancelled()
            and pending.exception() is None
        )

    def close(self) -> None:
        """Close the shared connection, if any, and forget it."""
        pending, self._pending = self._pending, None
        if pending is None:
            return

        def _close(future):
            if not future.cancelled() and future.exception() is None:
                future.result().close()

        if pending.done():
            _close(pending)
        else:
            pending.add_done_callback(_close)


_manager: Optional[ConnectionManager] = None


def get_manager(
    config: Optional[StoreConfig] = None,
    *,
    factory: Any = None,
    blocked: Optional[Callable[[Any], None]] = None,
) -> ConnectionManager:
    """
    Return the process-wide manager, creating it on first use.

    Arguments only matter for the call that creates it.
    """
    global _manager
    if _manager is None:
        _manager = ConnectionManager(config, factory=factory, blocked=blocked)
    return _manager


def reset_manager() -> None:
    """Close and drop the process-wide manager."""
    global _manager
    if _manager is not None:
        _manager.close()
        _manager = None


async def connect() -> DatabaseHandle:
    return await get_manager().connect()
