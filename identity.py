"""
Identity providers.

A provider signs a client in or out and tells its listeners about every
identity change. `FirebaseIdentityProvider` verifies Firebase ID tokens
issued to the browser; `DemoIdentityProvider` signs in a fixed demo user for
local development without Firebase.
"""

import logging
import threading
from typing import Callable

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import auth as firebase_auth

from models import Identity

logger = logging.getLogger(__name__)

ChangeListener = Callable[[Identity | None], None]


class AuthError(Exception):
    """Sign-in or sign-out failed at the identity provider."""


class IdentityProvider:
    def __init__(self):
        self.current: Identity | None = None
        self._listeners: list[ChangeListener] = []
        self._lock = threading.Lock()

    def on_change(self, callback: ChangeListener) -> Callable[[], None]:
        """Register `callback` for identity changes; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, identity: Identity | None) -> None:
        self.current = identity
        with self._lock:
            listeners = list(self._listeners)
        for cb in listeners:
            cb(identity)

    def reset(self) -> None:
        """Forget the current identity locally, without contacting the provider."""
        self._notify(None)

    def sign_in(self, credential: str | None = None) -> Identity:
        raise NotImplementedError

    def sign_out(self) -> None:
        raise NotImplementedError


class FirebaseIdentityProvider(IdentityProvider):
    """Firebase Authentication, verifying ID tokens with the Admin SDK."""

    def __init__(self, revoke_on_sign_out: bool = False):
        super().__init__()
        self.revoke_on_sign_out = revoke_on_sign_out

    def sign_in(self, credential=None):
        if not credential:
            raise AuthError("idToken is required")
        try:
            decoded = firebase_auth.verify_id_token(credential)
        except (firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError,
                firebase_auth.RevokedIdTokenError, firebase_auth.CertificateFetchError) as e:
            raise AuthError(str(e)) from e
        except (ValueError, firebase_exceptions.FirebaseError) as e:
            raise AuthError(f"Could not verify credentials: {e}") from e

        email = decoded.get("email")
        identity = Identity(
            uid=decoded["uid"],
            display_name=decoded.get("name") or (email.split("@")[0] if email else None),
            email=email,
            photo_url=decoded.get("picture"),
        )
        self._notify(identity)
        return identity

    def sign_out(self):
        identity = self.current
        try:
            if identity and self.revoke_on_sign_out:
                firebase_auth.revoke_refresh_tokens(identity.uid)
        except (ValueError, firebase_exceptions.FirebaseError) as e:
            raise AuthError(str(e)) from e
        finally:
            self._notify(None)


DEMO_IDENTITY = Identity(
    uid="demo-user-12345",
    display_name="Demo User",
    email="demo@studywise.local",
    photo_url=None,
)


class DemoIdentityProvider(IdentityProvider):
    """Signs in the demo user for any credential."""

    def __init__(self, identity: Identity = DEMO_IDENTITY):
        super().__init__()
        self.identity = identity

    def sign_in(self, credential=None):
        logger.info("[DEMO MODE] signing in %s", self.identity.email)
        self._notify(self.identity)
        return self.identity

    def sign_out(self):
        self._notify(None)
