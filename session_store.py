"""
Session state for one client.

A `SessionStore` is the single source of truth for who is signed in, the
live credit balance and the last generated lesson. It is an explicit
container handed to whoever needs it (the Flask routes look it up in a
`SessionRegistry`), and it only changes through its mutation methods.
"""

import logging
import threading
import time
import uuid
from typing import Any, Callable

from db_service import StudentDataService
from documents import DocumentStore
from identity import IdentityProvider
from models import Identity, user_account_path

logger = logging.getLogger(__name__)

StateListener = Callable[[dict[str, Any]], None]


class SessionStore:
    def __init__(self, provider: IdentityProvider, documents: DocumentStore,
                 service: StudentDataService | None = None):
        self.provider = provider
        self.documents = documents
        self.service = service or StudentDataService(documents)

        self.user: Identity | None = None
        self.credits = 0
        self.loading = True
        self.lesson_text: str | None = None

        # snapshot callbacks from Firestore arrive on a background thread
        self._lock = threading.RLock()
        self._listeners: list[StateListener] = []
        self._profile_unsubscribe: Callable[[], None] | None = None
        self._provider_unsubscribe = provider.on_change(self.set_user)

    @property
    def authenticated(self) -> bool:
        return self.user is not None

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "user": self.user.to_dict() if self.user else None,
                "authenticated": self.user is not None,
                "loading": self.loading,
                "credits": self.credits,
                "lessonText": self.lesson_text or None,
            }

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _changed(self) -> None:
        state = self.snapshot()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(state)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def sign_in(self, credential: str | None = None) -> Identity:
        """Sign in through the provider and make sure the user's documents exist.

        The identity itself is set by the provider's change notification.
        On any failure the session ends up signed out with `loading` reset,
        and the error is re-raised for the caller to show.
        """
        with self._lock:
            self.loading = True
        self._changed()
        try:
            identity = self.provider.sign_in(credential)
            self.service.initialize_user(identity)
            self.service.ensure_profile(identity)
        except Exception:
            logger.exception("Sign-in failed")
            # the provider may already have announced the identity
            self.provider.reset()
            self.set_user(None)
            raise
        logger.info("Signed in %s", identity.uid)
        return identity

    def sign_out(self) -> None:
        """Sign out; local state is cleared even when the provider call fails."""
        try:
            self.provider.sign_out()
        except Exception:
            logger.exception("Error during sign out")
        finally:
            self._release_profile_subscription()
            with self._lock:
                self.user = None
                self.credits = 0
                self.loading = False
            self._changed()

    def set_user(self, identity: Identity | None) -> None:
        """Identity-provider change handler."""
        self._release_profile_subscription()
        with self._lock:
            self.user = identity
            self.loading = False
            if identity is None:
                self.credits = 0
        if identity is not None:
            unsubscribe = self.documents.watch(
                user_account_path(identity.uid),
                lambda doc, uid=identity.uid: self._on_account_change(uid, doc),
            )
            with self._lock:
                self._profile_unsubscribe = unsubscribe
        self._changed()

    def set_lesson_text(self, text: str | None) -> None:
        with self._lock:
            self.lesson_text = text or None
        self._changed()

    def close(self) -> None:
        self._release_profile_subscription()
        self._provider_unsubscribe()

    # ------------------------------------------------------------------

    def _on_account_change(self, uid: str, doc: dict[str, Any] | None) -> None:
        with self._lock:
            # late callback for a user who is no longer signed in
            if self.user is None or self.user.uid != uid:
                return
            if doc is None:
                return
            self.credits = doc.get("credits") or 0
        self._changed()

    def _release_profile_subscription(self) -> None:
        with self._lock:
            unsubscribe, self._profile_unsubscribe = self._profile_unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()


class SessionRegistry:
    """Signed-in `SessionStore`s keyed by an opaque session id.

    Stores are only registered once sign-in succeeded. Stores idle for
    longer than `idle_timeout` seconds are closed and dropped on the next
    lookup or registration.
    """

    def __init__(self, factory: Callable[[], SessionStore], idle_timeout: float = 12 * 3600,
                 clock: Callable[[], float] = time.monotonic):
        self.factory = factory
        self.idle_timeout = idle_timeout
        self.clock = clock
        self._stores: dict[str, tuple[SessionStore, float]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def create(self) -> SessionStore:
        """A new, unregistered store."""
        return self.factory()

    def put(self, store: SessionStore) -> str:
        """Register `store` under a fresh id and return the id."""
        sid = self.new_id()
        with self._lock:
            expired = self._sweep_locked()
            self._stores[sid] = (store, self.clock())
        self._close_all(expired)
        return sid

    def get(self, sid: str | None) -> SessionStore | None:
        if not sid:
            return None
        with self._lock:
            expired = self._sweep_locked()
            entry = self._stores.get(sid)
            if entry is not None:
                self._stores[sid] = (entry[0], self.clock())
        self._close_all(expired)
        return entry[0] if entry is not None else None

    def discard(self, sid: str | None) -> None:
        if not sid:
            return
        with self._lock:
            entry = self._stores.pop(sid, None)
        if entry is not None:
            entry[0].close()

    def _sweep_locked(self) -> list[SessionStore]:
        cutoff = self.clock() - self.idle_timeout
        stale = [sid for sid, (_, seen) in self._stores.items() if seen < cutoff]
        return [self._stores.pop(sid)[0] for sid in stale]

    @staticmethod
    def _close_all(stores: list[SessionStore]) -> None:
        for store in stores:
            logger.info("Closing idle session for %s", store.user.uid if store.user else "anonymous")
            store.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._stores)
