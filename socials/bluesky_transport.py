# socials/bluesky_transport.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from atproto import models
from pydantic import ValidationError

from socials.errors import AuthError, DecodingError, NetworkError, PostError, UploadError
from socials.types import (
    POST_COLLECTION,
    CreateRecordResponse,
    PostRecord,
    RefreshResponse,
    SessionResponse,
    UploadResponse,
)
from utils.http import TIMEOUT, build_session

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_URL = "https://bsky.social/xrpc"

# Error codes the PDS uses (with HTTP 400) for a stale or bad access token.
_AUTH_ERROR_CODES = {"ExpiredToken", "InvalidToken", "AuthenticationRequired", "AuthMissing"}


def _error_code(resp: requests.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    return body.get("error") if isinstance(body, dict) else None


def _body_preview(resp: requests.Response, limit: int = 300) -> str:
    return (resp.text or "")[:limit]


def is_auth_rejection(resp: requests.Response) -> bool:
    if resp.status_code == 401:
        return True
    return resp.status_code == 400 and _error_code(resp) in _AUTH_ERROR_CODES


class BlueskyTransport:
    """
    Thin XRPC client for the four calls the posting pipeline needs.

    Stateless beyond the requests.Session it reuses: every token is passed in
    by the caller. Every requests exception is mapped to NetworkError and every
    unexpected status or body to one of the pipeline's error kinds. No retries.
    """

    def __init__(
        self,
        service_url: str = DEFAULT_SERVICE_URL,
        timeout: float = TIMEOUT,
        session: Optional[requests.Session] = None,
        user_agent: Optional[str] = None,
    ):
        self.service_url = service_url.rstrip("/")
        self.timeout = timeout
        self.session = session or build_session(user_agent)

    def _url(self, nsid: str) -> str:
        return f"{self.service_url}/{nsid}"

    def _post(self, nsid: str, **kwargs) -> requests.Response:
        try:
            return self.session.post(self._url(nsid), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("%s: no response (%s)", nsid, type(e).__name__)
            raise NetworkError(f"{nsid}: {type(e).__name__}: {e}") from e

    # ---------------- Session ----------------

    def create_session(self, identifier: str, secret: str) -> SessionResponse:
        resp = self._post(
            "com.atproto.server.createSession",
            json={"identifier": identifier, "password": secret},
        )
        if resp.status_code != 200:
            logger.warning("createSession rejected (%s): %s", resp.status_code, _body_preview(resp))
            raise AuthError(AuthError.REJECTED, f"Login rejected (HTTP {resp.status_code})", resp.status_code)
        try:
            return SessionResponse.from_json(resp.json())
        except (ValueError, DecodingError) as e:
            raise AuthError(AuthError.MALFORMED_RESPONSE, str(e), resp.status_code) from e

    def refresh_session(self, refresh_token: str) -> RefreshResponse:
        resp = self._post(
            "com.atproto.server.refreshSession",
            headers={"Authorization": f"Bearer {refresh_token}"},
        )
        if resp.status_code != 200:
            logger.warning("refreshSession rejected (%s): %s", resp.status_code, _body_preview(resp))
            raise AuthError(AuthError.REJECTED, f"Refresh rejected (HTTP {resp.status_code})", resp.status_code)
        try:
            return RefreshResponse.from_json(resp.json())
        except (ValueError, DecodingError) as e:
            raise AuthError(AuthError.MALFORMED_RESPONSE, str(e), resp.status_code) from e

    # ---------------- Repo ----------------

    def upload_blob(self, access_token: str, data: bytes) -> UploadResponse:
        resp = self._post(
            "com.atproto.repo.uploadBlob",
            data=data,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/octet-stream",
            },
        )
        if not 200 <= resp.status_code < 300:
            logger.warning("uploadBlob failed (%s): %s", resp.status_code, _body_preview(resp))
            raise UploadError(f"Blob upload failed (HTTP {resp.status_code})", resp.status_code)
        try:
            return UploadResponse.from_json(resp.json())
        except (ValueError, DecodingError) as e:
            raise UploadError(f"Undecodable upload response: {e}", resp.status_code) from e

    def create_record(
        self, access_token: str, repo: str, record: PostRecord | models.AppBskyFeedPost.Record | Dict[str, Any]
    ) -> CreateRecordResponse:
        try:
            if isinstance(record, PostRecord):
                record = record.to_model()
            if isinstance(record, models.AppBskyFeedPost.Record):
                record = models.get_model_as_dict(record)
        except ValidationError as e:
            raise PostError(f"Record is not a valid {POST_COLLECTION}: {e.error_count()} error(s)") from e

        payload = {"repo": repo, "collection": POST_COLLECTION, "record": record}
        resp = self._post(
            "com.atproto.repo.createRecord",
            json=payload,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if is_auth_rejection(resp):
            logger.warning("createRecord auth rejected (%s): %s", resp.status_code, _body_preview(resp))
            raise AuthError(AuthError.REJECTED, f"Access token rejected (HTTP {resp.status_code})", resp.status_code)
        if not 200 <= resp.status_code < 300:
            logger.warning("createRecord failed (%s): %s", resp.status_code, _body_preview(resp))
            raise PostError(f"Record creation failed (HTTP {resp.status_code})", resp.status_code)
        try:
            body = resp.json()
        except ValueError as e:
            raise PostError(f"Malformed createRecord response: {e}", resp.status_code) from e
        return CreateRecordResponse.from_json(body)
