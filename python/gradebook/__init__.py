# -*- encoding: utf-8 -*-
"""
gradebook Package - academic records kept in the browser's IndexedDB
"""

from .models import Student, SubjectRecord, Credential, PASS_THRESHOLD
from .idb import (
    IndexedDBError,
    IndexedDBRequestError,
    TransactionAbortedError,
    IDBTransactionMode,
    open_database,
    delete_database,
)
from .connection import ConnectionManager, StoreConfig, get_manager, reset_manager
from .rehydrate import flatten, rehydrate
from .store import StudentStore
from .registry import Registry, DuplicateStudentError
