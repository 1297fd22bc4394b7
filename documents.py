"""
Document database access.

Paths follow Firestore's `collection/id/subcollection/id` layout. Two backends
share one interface: `FirestoreDocumentStore` (Cloud Firestore through the
Firebase Admin SDK) and `MemoryDocumentStore` (in-process, used in demo mode
and by the test-suite).
"""

import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1.base_query import FieldFilter

logger = logging.getLogger(__name__)

# Server-assigned time. Resolved by Firestore, or by the memory backend on write.
SERVER_TIMESTAMP = firestore.SERVER_TIMESTAMP

Unsubscribe = Callable[[], None]
WatchCallback = Callable[[dict[str, Any] | None], None]


class DocumentStoreError(Exception):
    """Raised when the document database rejects or fails an operation."""


class DocumentNotFoundError(DocumentStoreError):
    """Raised by `update` when the target document does not exist."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStore:
    """Operations consumed from the document database."""

    def get(self, path: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        raise NotImplementedError

    def update(self, path: str, fields: dict[str, Any]) -> None:
        raise NotImplementedError

    def add(self, collection: str, data: dict[str, Any]) -> str:
        raise NotImplementedError

    def query(self, collection: str, field: str | None = None, value: Any = None) -> list[tuple[str, dict[str, Any]]]:
        """Documents of `collection`, optionally filtered by `field == value`."""
        raise NotImplementedError

    def watch(self, path: str, callback: WatchCallback) -> Unsubscribe:
        """Call `callback` with the document (or None) now and after every change."""
        raise NotImplementedError


# ============================================================================
# FIRESTORE
# ============================================================================

def init_firebase(credentials_path: str | None = None):
    """Initialize the default Firebase app once and return it."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    if credentials_path:
        cred = credentials.Certificate(credentials_path)
    else:
        cred = credentials.ApplicationDefault()
    app = firebase_admin.initialize_app(cred)
    logger.info("Firebase Admin connected (project=%s)", app.project_id)
    return app


class FirestoreDocumentStore(DocumentStore):
    def __init__(self, client=None):
        self.client = client or firestore.client()

    def get(self, path):
        try:
            snap = self.client.document(path).get()
        except google_exceptions.GoogleAPICallError as e:
            raise DocumentStoreError(str(e)) from e
        return snap.to_dict() if snap.exists else None

    def set(self, path, data, merge=False):
        try:
            self.client.document(path).set(data, merge=merge)
        except google_exceptions.GoogleAPICallError as e:
            raise DocumentStoreError(str(e)) from e

    def update(self, path, fields):
        try:
            self.client.document(path).update(fields)
        except google_exceptions.NotFound as e:
            raise DocumentNotFoundError(path) from e
        except google_exceptions.GoogleAPICallError as e:
            raise DocumentStoreError(str(e)) from e

    def add(self, collection, data):
        try:
            _, doc_ref = self.client.collection(collection).add(data)
        except google_exceptions.GoogleAPICallError as e:
            raise DocumentStoreError(str(e)) from e
        return doc_ref.id

    def query(self, collection, field=None, value=None):
        ref = self.client.collection(collection)
        if field is not None:
            ref = ref.where(filter=FieldFilter(field, "==", value))
        try:
            return [(doc.id, doc.to_dict()) for doc in ref.stream()]
        except google_exceptions.GoogleAPICallError as e:
            raise DocumentStoreError(str(e)) from e

    def watch(self, path, callback):
        def on_snapshot(doc_snapshots, changes, read_time):
            for snap in doc_snapshots:
                callback(snap.to_dict() if snap.exists else None)

        watch = self.client.document(path).on_snapshot(on_snapshot)
        return watch.unsubscribe


# ============================================================================
# IN-MEMORY
# ============================================================================

class MemoryDocumentStore(DocumentStore):
    """Thread-safe in-process document store with Firestore-like semantics."""

    def __init__(self, clock: Callable[[], datetime] = _now):
        self.clock = clock
        self._docs: dict[str, dict[str, Any]] = {}
        self._watchers: dict[str, list[WatchCallback]] = {}
        self._lock = threading.RLock()

    def _resolve(self, value):
        if value is SERVER_TIMESTAMP:
            return self.clock()
        if isinstance(value, dict):
            return {k: self._resolve(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve(v) for v in value]
        return copy.deepcopy(value)

    def _notify(self, path, data):
        # callbacks run outside the lock; watchers may call back into the store
        with self._lock:
            callbacks = list(self._watchers.get(path, []))
        for cb in callbacks:
            cb(copy.deepcopy(data))

    def get(self, path):
        with self._lock:
            doc = self._docs.get(path)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, path, data, merge=False):
        resolved = self._resolve(data)
        with self._lock:
            if merge and path in self._docs:
                merged = dict(self._docs[path])
                merged.update(resolved)
                resolved = merged
            self._docs[path] = resolved
        self._notify(path, resolved)

    def update(self, path, fields):
        resolved = self._resolve(fields)
        with self._lock:
            if path not in self._docs:
                raise DocumentNotFoundError(path)
            updated = dict(self._docs[path])
            updated.update(resolved)
            self._docs[path] = updated
        self._notify(path, updated)

    def add(self, collection, data):
        doc_id = uuid.uuid4().hex[:20]
        self.set(f"{collection}/{doc_id}", data)
        return doc_id

    def query(self, collection, field=None, value=None):
        prefix = collection.rstrip("/") + "/"
        out = []
        with self._lock:
            for path, doc in self._docs.items():
                if not path.startswith(prefix):
                    continue
                doc_id = path[len(prefix):]
                if "/" in doc_id:
                    continue
                if field is not None and doc.get(field) != value:
                    continue
                out.append((doc_id, copy.deepcopy(doc)))
        return out

    def watch(self, path, callback):
        with self._lock:
            self._watchers.setdefault(path, []).append(callback)
            current = copy.deepcopy(self._docs.get(path))
        callback(current)

        def unsubscribe():
            with self._lock:
                callbacks = self._watchers.get(path, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def watcher_count(self, path: str) -> int:
        with self._lock:
            return len(self._watchers.get(path, []))
