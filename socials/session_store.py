# socials/session_store.py
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

from socials.bluesky_transport import BlueskyTransport
from socials.errors import AuthError
from socials.types import Credentials

logger = logging.getLogger(__name__)


class CredentialPersistence(Protocol):
    """Where exported credentials live between runs (file, keychain, ...)."""

    def load(self) -> Optional[Dict[str, Any]]: ...

    def save(self, data: Dict[str, Any]) -> None: ...

    def clear(self) -> None: ...


class InMemoryCredentialPersistence:
    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data = dict(data) if data else None

    def load(self) -> Optional[Dict[str, Any]]:
        return dict(self.data) if self.data else None

    def save(self, data: Dict[str, Any]) -> None:
        self.data = dict(data)

    def clear(self) -> None:
        self.data = None


class JsonFileCredentialPersistence:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Failed to read Bluesky session from %s (%s). Ignoring it.", self.path, e)
            return None

    def save(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data), encoding="utf-8")
        logger.info("Bluesky session saved to %s", self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class SessionStore:
    """
    Single owner of the current Credentials.

    All mutation goes through login(), refresh(), import_credentials() and
    clear(), each holding the store lock for the whole exchange so at most
    one login/refresh is in flight per account.
    """

    def __init__(
        self,
        transport: BlueskyTransport,
        persistence: Optional[CredentialPersistence] = None,
    ):
        self.transport = transport
        self.persistence = persistence or InMemoryCredentialPersistence()
        self.lock = threading.RLock()
        self._credentials: Optional[Credentials] = None
        self._restore()

    # ---------------- Persistence helpers ----------------

    def _restore(self) -> None:
        data = self.persistence.load()
        if not data:
            return
        try:
            self._credentials = Credentials.from_dict(data)
            logger.info("Bluesky session restored for %s", self._credentials.identifier)
        except ValueError as e:
            logger.warning("Ignoring persisted Bluesky session (%s).", e)

    def _persist(self) -> None:
        """Save the current credentials. A failed save is logged, never raised."""
        if self._credentials is None:
            return
        try:
            self.persistence.save(self._credentials.to_dict())
        except OSError as e:
            logger.warning("Failed to save Bluesky session (%s). Continuing with the in-memory session.", e)

    def export_credentials(self) -> Optional[Dict[str, Any]]:
        with self.lock:
            return self._credentials.to_dict() if self._credentials else None

    def import_credentials(self, data: Dict[str, Any]) -> None:
        with self.lock:
            self._credentials = Credentials.from_dict(data)
            self._persist()

    # ---------------- State ----------------

    @property
    def credentials(self) -> Optional[Credentials]:
        return self._credentials

    @property
    def access_token(self) -> Optional[str]:
        return self._credentials.access_token if self._credentials else None

    @property
    def account_id(self) -> Optional[str]:
        return self._credentials.account_id if self._credentials else None

    def is_authenticated(self) -> bool:
        return self._credentials is not None and self._credentials.is_authenticated

    # ---------------- Lifecycle ----------------

    def login(self, identifier: str, secret: str) -> Credentials:
        """
        Exchange identifier + secret for a session.

        Raises:
            AuthError: REJECTED on a non-200 status, MALFORMED_RESPONSE when
                the body lacks did/accessJwt/refreshJwt.
            NetworkError: when no response was received.
        """
        with self.lock:
            resp = self.transport.create_session(identifier, secret)
            self._credentials = Credentials(
                identifier=identifier,
                secret=secret,
                access_token=resp.access_jwt,
                refresh_token=resp.refresh_jwt,
                account_id=resp.did,
            )
            self._persist()
            logger.info("Logged in to Bluesky as %s (%s)", identifier, resp.did)
            return self._credentials

    def refresh(self) -> None:
        """
        Swap the refresh token for a new access/refresh pair.
        On failure the current credentials are left untouched.
        """
        with self.lock:
            creds = self._credentials
            if creds is None or not creds.refresh_token:
                raise AuthError(AuthError.NO_SESSION, "No refresh token held")

            resp = self.transport.refresh_session(creds.refresh_token)
            creds.access_token = resp.access_jwt
            creds.refresh_token = resp.refresh_jwt
            if resp.did:
                creds.account_id = resp.did
            self._persist()
            logger.info("Bluesky session refreshed for %s", creds.identifier)

    def ensure_authenticated(self) -> bool:
        """
        Refresh once if the session is not currently usable.

        A caller that waited on the lock re-checks first, so concurrent
        submissions share a single refresh. Returns True if a refresh ran.
        """
        if self.is_authenticated():
            return False
        with self.lock:
            if self.is_authenticated():
                return False
            self.refresh()
            return True

    def clear(self) -> None:
        with self.lock:
            self._credentials = None
            try:
                self.persistence.clear()
            except OSError as e:
                logger.warning("Failed to remove saved Bluesky session (%s).", e)
            logger.info("Bluesky session cleared")
