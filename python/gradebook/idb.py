# -*- encoding: utf-8 -*-
"""
Awaitable facade over the browser's IndexedDB API for Pyodide/PyScript.

IndexedDB reports every outcome through events:
- requests fire onsuccess / onerror (open requests also onupgradeneeded
  and onblocked)
- transactions fire oncomplete / onerror / onabort

Each of those one-shot handler pairs is bound to a Deferred, a future that
settles exactly once, so callers simply await the result:

    db = await open_database("AcademicRecordsDB", 1, upgrade=upgrade)
    tx = db.transaction("students", IDBTransactionMode.READONLY)
    rows = await tx.store.get_all()
    await tx.done

The handles (DatabaseHandle, TransactionHandle, CollectionHandle,
IndexHandle) are fixed wrappers around the native objects; nothing is
discovered at runtime.

Memory Safety:
- Pyodide proxies created for handlers are detached and destroyed as soon
  as the future they feed has settled

Outside the browser the js/pyodide names are None. Every entry point then
needs an explicit ``factory`` exposing the IDBFactory surface.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, List, Optional, Union

# Pyodide/PyScript browser environment imports
try:
    from js import indexedDB, Object
    from pyodide.ffi import create_proxy, to_js
except ImportError:
    indexedDB = None
    Object = None
    create_proxy = None
    to_js = None

from . import ui_log


# =============================================================================
# EXCEPTIONS
# =============================================================================


class IndexedDBError(Exception):
    """Base exception for IndexedDB operations."""

    pass


class IndexedDBRequestError(IndexedDBError):
    """
    Request-level error.

    ``name`` is the DOMException name when there is one and ``error`` is the
    native error object exactly as IndexedDB reported it.
    """

    def __init__(self, message: str, *, name: Optional[str] = None, error: Any = None):
        super().__init__(message)
        self.name = name
        self.error = error


class TransactionAbortedError(IndexedDBRequestError):
    """Transaction was aborted."""

    pass


# =============================================================================
# CONVERSIONS
# =============================================================================


def _is_js_null(value: Any) -> bool:
    """Return True if value represents JS null/undefined in Pyodide."""
    if value is None:
        return True
    return type(value).__name__ in ("JsNull", "JsUndefined")


def to_py_value(value: Any) -> Any:
    """Convert a value read from IndexedDB into plain Python data."""
    if _is_js_null(value):
        return None
    if hasattr(value, "to_py"):
        return value.to_py()
    return value


def to_js_value(value: Any) -> Any:
    """
    Convert plain Python data into something IndexedDB can structured-clone.

    dicts become JS objects (not Maps) so key paths resolve against them.
    """
    if to_js is None:
        return value
    return to_js(value, dict_converter=Object.fromEntries)


def _keep(value: Any) -> Any:
    return None if _is_js_null(value) else value


def _discard(value: Any) -> None:
    return None


def _string_list(names: Any) -> List[str]:
    """Normalize a DOMStringList (or plain sequence) to a list of str."""
    if names is None:
        return []
    if isinstance(names, str):
        return [names]
    if hasattr(names, "item") and hasattr(names, "length"):
        return [str(names.item(i)) for i in range(names.length)]
    return [str(name) for name in names]


def _native_error(event: Any) -> Any:
    target = getattr(event, "target", None)
    error = getattr(target, "error", None)
    return None if _is_js_null(error) else error


def _request_error(
    error: Any, default: str, cls: type = IndexedDBRequestError
) -> IndexedDBRequestError:
    name = getattr(error, "name", None)
    message = str(error) if error is not None else default
    return cls(message, name=name, error=error)


# =============================================================================
# DEFERRED
# =============================================================================


class Deferred:
    """
    Future settled from native callbacks, exactly once.

    resolve() and reject() return True only for the call that actually
    settled the future; anything after that is ignored, no matter how often
    the native side fires.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop if loop is not None else asyncio.get_running_loop()
        self.future = self.loop.create_future()

    @property
    def settled(self) -> bool:
        return self.future.done()

    def resolve(self, value: Any = None) -> bool:
        if self.future.done():
            return False
        self.future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True

    def __await__(self):
        return self.future.__await__()


class _Handlers:
    """Event handlers bound on one native target, proxied under Pyodide."""

    def __init__(self, target: Any):
        self.target = target
        self.names: List[str] = []
        self.proxies: List[Any] = []

    def bind(self, name: str, handler: Callable[[Any], None]) -> None:
        if create_proxy is not None:
            handler = create_proxy(handler)
            self.proxies.append(handler)
        setattr(self.target, name, handler)
        self.names.append(name)

    def release(self, *_: Any) -> None:
        """Detach handlers, then destroy their proxies."""
        for name in self.names:
            setattr(self.target, name, None)
        for proxy in self.proxies:
            proxy.destroy()
        self.names = []
        self.proxies = []


def _observe(future: asyncio.Future) -> None:
    # completion futures are often never awaited once an operation failed
    if not future.cancelled():
        future.exception()


def wrap_request(
    request: Any, convert: Optional[Callable[[Any], Any]] = to_py_value
) -> asyncio.Future:
    """
    Bind an IDBRequest to a future.

    Handlers are attached before returning, so no event can be missed even
    if the caller awaits later. The future resolves with the converted
    ``request.result`` or rejects with IndexedDBRequestError.
    """
    deferred = Deferred()
    handlers = _Handlers(request)

    def on_success(event):
        result = event.target.result
        try:
            deferred.resolve(convert(result) if convert is not None else result)
        except Exception as ex:
            deferred.reject(ex)

    def on_error(event):
        deferred.reject(_request_error(_native_error(event), "Request error"))

    handlers.bind("onsuccess", on_success)
    handlers.bind("onerror", on_error)
    deferred.future.add_done_callback(handlers.release)
    return deferred.future


def _issue(
    call: Callable[[], Any], convert: Optional[Callable[[Any], Any]] = to_py_value
) -> asyncio.Future:
    """
    Issue a native request. A synchronous throw (ReadOnlyError,
    TransactionInactiveError, DataError...) becomes a rejected future.
    """
    try:
        request = call()
    except Exception as ex:
        deferred = Deferred()
        deferred.reject(ex)
        return deferred.future
    return wrap_request(request, convert)


def _walk(
    request: Any, on_item: Callable[[Any], Any], on_done: Optional[Callable[[], None]]
) -> asyncio.Future:
    """
    Walk a cursor without yielding between steps.

    IndexedDB transactions auto-commit once control returns to the event
    loop with no request pending, so every step is taken inside onsuccess.
    on_item gets the native cursor and returns truthy to continue. on_done
    runs inside the same transaction after the walk, so it may still issue
    writes.
    """
    deferred = Deferred()
    handlers = _Handlers(request)

    def on_success(event):
        if deferred.settled:
            return
        cursor = event.target.result
        try:
            if _is_js_null(cursor) or not on_item(cursor):
                if on_done is not None:
                    on_done()
                deferred.resolve(True)
                return
            cursor.continue_()
        except Exception as ex:
            deferred.reject(ex)

    def on_error(event):
        deferred.reject(_request_error(_native_error(event), "Cursor error"))

    handlers.bind("onsuccess", on_success)
    handlers.bind("onerror", on_error)
    deferred.future.add_done_callback(handlers.release)
    return deferred.future


# =============================================================================
# HANDLES
# =============================================================================


class IDBTransactionMode(Enum):
    """IndexedDB transaction modes."""

    READONLY = "readonly"
    READWRITE = "readwrite"


class IndexHandle:
    """Awaitable operations on one IDBIndex."""

    def __init__(self, index: Any):
        self._index = index

    @property
    def name(self) -> str:
        return self._index.name

    def get(self, key: Any) -> asyncio.Future:
        return _issue(lambda: self._index.get(key))

    def get_all(self, query: Any = None, count: Optional[int] = None) -> asyncio.Future:
        return _issue(lambda: self._index.getAll(query, count))

    def count(self, query: Any = None) -> asyncio.Future:
        return _issue(lambda: self._index.count(query))

    def open_cursor(self, query: Any = None, direction: str = "next") -> asyncio.Future:
        """Resolve with the cursor at its first position, or None."""
        return _issue(lambda: self._index.openCursor(query, direction), _keep)

    def walk(
        self,
        on_item: Callable[[Any], Any],
        on_done: Optional[Callable[[], None]] = None,
        query: Any = None,
        direction: str = "next",
    ) -> asyncio.Future:
        try:
            request = self._index.openCursor(query, direction)
        except Exception as ex:
            deferred = Deferred()
            deferred.reject(ex)
            return deferred.future
        return _walk(request, on_item, on_done)


class CollectionHandle:
    """
    Awaitable operations on one IDBObjectStore.

    Every method issues its native request immediately and returns a future
    for the outcome.
    """

    def __init__(self, store: Any, transaction: Optional["TransactionHandle"] = None):
        self._store = store
        self.transaction = transaction

    @property
    def name(self) -> str:
        return self._store.name

    @property
    def key_path(self) -> Any:
        return to_py_value(self._store.keyPath)

    @property
    def index_names(self) -> List[str]:
        return _string_list(self._store.indexNames)

    def get(self, key: Any) -> asyncio.Future:
        return _issue(lambda: self._store.get(key))

    def get_all(self, query: Any = None, count: Optional[int] = None) -> asyncio.Future:
        return _issue(lambda: self._store.getAll(query, count))

    def put(self, value: Any, key: Any = None) -> asyncio.Future:
        """Insert or overwrite; resolves with the record key."""
        value = to_js_value(value)
        if key is None:
            return _issue(lambda: self._store.put(value))
        return _issue(lambda: self._store.put(value, key))

    def add(self, value: Any, key: Any = None) -> asyncio.Future:
        """Insert only; rejects with ConstraintError when the key exists."""
        value = to_js_value(value)
        if key is None:
            return _issue(lambda: self._store.add(value))
        return _issue(lambda: self._store.add(value, key))

    def delete(self, key: Any) -> asyncio.Future:
        return _issue(lambda: self._store.delete(key), _discard)

    def clear(self) -> asyncio.Future:
        return _issue(lambda: self._store.clear(), _discard)

    def count(self, query: Any = None) -> asyncio.Future:
        return _issue(lambda: self._store.count(query))

    def open_cursor(self, query: Any = None, direction: str = "next") -> asyncio.Future:
        """Resolve with the cursor at its first position, or None."""
        return _issue(lambda: self._store.openCursor(query, direction), _keep)

    def walk(
        self,
        on_item: Callable[[Any], Any],
        on_done: Optional[Callable[[], None]] = None,
        query: Any = None,
        direction: str = "next",
    ) -> asyncio.Future:
        try:
            request = self._store.openCursor(query, direction)
        except Exception as ex:
            deferred = Deferred()
            deferred.reject(ex)
            return deferred.future
        return _walk(request, on_item, on_done)

    def index(self, name: str) -> IndexHandle:
        return IndexHandle(self._store.index(name))

    def create_index(self, name: str, key_path: str, unique: bool = False) -> IndexHandle:
        """Only valid inside an upgrade callback."""
        options = to_js_value({"unique": unique})
        return IndexHandle(self._store.createIndex(name, key_path, options))

    def delete_index(self, name: str) -> None:
        self._store.deleteIndex(name)


class TransactionHandle:
    """
    Wrapped IDBTransaction.

    ``done`` is created together with the handle: it resolves on complete
    and rejects with the transaction error on error or abort. A write is
    durable only once ``done`` has resolved.

    Usage:
        tx = db.transaction("students", IDBTransactionMode.READWRITE)
        async with tx:
            await tx.store.put(record)
        # complete here
    """

    def __init__(
        self,
        tx: Any,
        db: Optional["DatabaseHandle"] = None,
        names: Optional[List[str]] = None,
    ):
        self._tx = tx
        self.db = db
        # scope in the order requested; objectStoreNames comes back sorted
        self.names = list(names) if names is not None else None
        self.done = self._completion()

    def _completion(self) -> asyncio.Future:
        deferred = Deferred()
        handlers = _Handlers(self._tx)

        def on_complete(event):
            deferred.resolve(None)

        def on_error(event):
            error = self.error
            if error is None:
                error = _native_error(event)
            deferred.reject(_request_error(error, "Transaction error"))

        def on_abort(event):
            deferred.reject(
                _request_error(self.error, "Transaction aborted", TransactionAbortedError)
            )

        handlers.bind("oncomplete", on_complete)
        handlers.bind("onerror", on_error)
        handlers.bind("onabort", on_abort)
        deferred.future.add_done_callback(handlers.release)
        deferred.future.add_done_callback(_observe)
        return deferred.future

    @property
    def store_names(self) -> List[str]:
        return _string_list(self._tx.objectStoreNames)

    @property
    def store(self) -> CollectionHandle:
        """The first store the transaction was opened with."""
        names = self.names if self.names else self.store_names
        return self.object_store(names[0])

    @property
    def mode(self) -> str:
        return self._tx.mode

    @property
    def error(self) -> Any:
        error = self._tx.error
        return None if _is_js_null(error) else error

    def object_store(self, name: str) -> CollectionHandle:
        return CollectionHandle(self._tx.objectStore(name), self)

    def abort(self) -> None:
        self._tx.abort()

    async def __aenter__(self) -> "TransactionHandle":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            # Wait for transaction to complete (durability guarantee)
            await self.done
        return False


class DatabaseHandle:
    """Wrapped IDBDatabase."""

    def __init__(self, db: Any):
        self._db = db

    @property
    def name(self) -> str:
        return self._db.name

    @property
    def version(self) -> int:
        return int(self._db.version)

    @property
    def store_names(self) -> List[str]:
        return _string_list(self._db.objectStoreNames)

    def contains(self, store_name: str) -> bool:
        names = self._db.objectStoreNames
        if hasattr(names, "contains"):
            return bool(names.contains(store_name))
        return store_name in _string_list(names)

    def create_object_store(
        self, name: str, key_path: Optional[str] = None, auto_increment: bool = False
    ) -> CollectionHandle:
        """Only valid inside an upgrade callback."""
        options = {}
        if key_path is not None:
            options["keyPath"] = key_path
        if auto_increment:
            options["autoIncrement"] = True
        return CollectionHandle(self._db.createObjectStore(name, to_js_value(options)))

    def delete_object_store(self, name: str) -> None:
        self._db.deleteObjectStore(name)

    def transaction(
        self,
        store_names: Union[str, List[str]],
        mode: Union[IDBTransactionMode, str] = IDBTransactionMode.READONLY,
    ) -> TransactionHandle:
        if isinstance(store_names, str):
            store_names = [store_names]
        names = to_js(list(store_names)) if to_js is not None else list(store_names)
        if isinstance(mode, IDBTransactionMode):
            mode = mode.value
        return TransactionHandle(
            self._db.transaction(names, mode), self, list(store_names)
        )

    def close(self) -> None:
        self._db.close()


# =============================================================================
# OPEN / DELETE
# =============================================================================


def _factory(factory: Any) -> Any:
    if factory is None:
        factory = indexedDB
    if factory is None:
        raise IndexedDBError(
            "IndexedDB not available - not running in browser environment"
        )
    return factory


async def open_database(
    name: str,
    version: int = 1,
    *,
    upgrade: Optional[Callable[[DatabaseHandle, int, int], None]] = None,
    blocked: Optional[Callable[[Any], None]] = None,
    factory: Any = None,
) -> DatabaseHandle:
    """
    Open (or create) a database.

    Args:
        name: Database name
        version: Schema version; raising it runs ``upgrade``
        upgrade: Called as upgrade(db, old_version, new_version) inside
                 onupgradeneeded. If it raises, the connection is closed and
                 the open call fails with that exception.
        blocked: Called with the native event when another open connection
                 holds up the version change. Being blocked never fails the
                 open; it completes once the other connection closes.
        factory: IDBFactory to use instead of the browser's indexedDB

    Raises:
        IndexedDBError: IndexedDB is not available
        IndexedDBRequestError: The open request failed
    """
    factory = _factory(factory)
    deferred = Deferred()

    def on_upgrade(event):
        """Called when database is created or version increases."""
        if upgrade is None:
            return
        db = event.target.result
        try:
            upgrade(DatabaseHandle(db), int(event.oldVersion), version)
        except Exception as ex:
            db.close()
            deferred.reject(ex)

    def on_blocked(event):
        """Called when another connection has the DB open at an older version."""
        if blocked is not None:
            blocked(event)
        else:
            ui_log.emit(
                f"Database '{name}' upgrade blocked - close other tabs using this database",
                "warn",
            )

    def on_success(event):
        deferred.resolve(DatabaseHandle(event.target.result))

    def on_error(event):
        deferred.reject(_request_error(_native_error(event), "Failed to open database"))

    request = factory.open(name, version)
    handlers = _Handlers(request)
    try:
        handlers.bind("onupgradeneeded", on_upgrade)
        handlers.bind("onblocked", on_blocked)
        handlers.bind("onsuccess", on_success)
        handlers.bind("onerror", on_error)
        return await deferred
    finally:
        handlers.release()


async def delete_database(
    name: str, *, blocked: Optional[Callable[[Any], None]] = None, factory: Any = None
) -> bool:
    """
    Delete an entire IndexedDB database.

    WARNING: This is destructive and cannot be undone.
    """
    factory = _factory(factory)
    request = factory.deleteDatabase(name)
    handlers = _Handlers(request)
    try:
        if blocked is not None:
            handlers.bind("onblocked", blocked)
        await wrap_request(request, None)
    finally:
        handlers.release()
    return True
