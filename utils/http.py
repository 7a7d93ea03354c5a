# utils/http.py
from __future__ import annotations

import logging
from typing import Optional

import requests

from utils.others import mask_token

log = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "skyposter/1.0 (+https://bsky.app)"
TIMEOUT = 30.0  # per request timeout, overridable from config


class LoggingSession(requests.Session):
    """requests.Session that logs every call; bearer tokens and binary bodies are never logged in full."""

    def request(self, method, url, **kwargs):
        log.info("Making %s request to URL: %s", method, url)
        if "json" in kwargs and kwargs["json"] is not None:
            log.debug("With json: %s", _redact(kwargs["json"]))
        if "data" in kwargs and isinstance(kwargs["data"], (bytes, bytearray)):
            log.debug("With %d bytes of binary data", len(kwargs["data"]))
        if "headers" in kwargs and kwargs["headers"]:
            headers = dict(kwargs["headers"])
            auth = headers.get("Authorization")
            if auth:
                scheme, _, token = auth.partition(" ")
                headers["Authorization"] = f"{scheme} {mask_token(token)}"
            log.debug("With headers: %s", headers)

        response = super().request(method, url, **kwargs)

        log.debug("Received response: %s", response.status_code)
        return response


def _redact(payload):
    if isinstance(payload, dict):
        return {k: ("***" if k in ("password", "secret") else _redact(v)) for k, v in payload.items()}
    return payload


def build_session(user_agent: Optional[str] = None) -> requests.Session:
    session = LoggingSession()
    session.headers.update({"User-Agent": user_agent or DEFAULT_USER_AGENT})
    return session
