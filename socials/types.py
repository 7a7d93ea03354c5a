# socials/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pytz
from atproto import models
from atproto_client.exceptions import ModelError
from atproto_client.models.blob_ref import BlobRef
from pydantic import ValidationError

from core.media import EncodedBlob
from core.richtext import Annotation, to_facets
from socials.errors import DecodingError, PostingError

POST_COLLECTION = models.ids.AppBskyFeedPost


@dataclass
class Credentials:
    """
    The unit of session state.

    secret is only needed for the initial login and is never exported.
    """

    identifier: str
    secret: str = field(default="", repr=False)
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    account_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token) and bool(self.account_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "account_id": self.account_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credentials":
        if not isinstance(data, dict) or not data.get("identifier"):
            raise ValueError("Credentials payload needs at least an identifier")
        return cls(
            identifier=str(data["identifier"]),
            access_token=data.get("access_token") or None,
            refresh_token=data.get("refresh_token") or None,
            account_id=data.get("account_id") or None,
        )


# ---------------- Typed endpoint responses ----------------


def _require(data: Any, *keys: str, endpoint: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise DecodingError(f"{endpoint}: expected a JSON object, got {type(data).__name__}")
    missing = [k for k in keys if not data.get(k)]
    if missing:
        raise DecodingError(f"{endpoint}: response missing {', '.join(missing)}")
    return data


@dataclass(frozen=True)
class SessionResponse:
    did: str
    access_jwt: str = field(repr=False)
    refresh_jwt: str = field(repr=False)

    @classmethod
    def from_json(cls, data: Any) -> "SessionResponse":
        d = _require(data, "did", "accessJwt", "refreshJwt", endpoint="createSession")
        return cls(did=str(d["did"]), access_jwt=str(d["accessJwt"]), refresh_jwt=str(d["refreshJwt"]))


@dataclass(frozen=True)
class RefreshResponse:
    access_jwt: str = field(repr=False)
    refresh_jwt: str = field(repr=False)
    did: Optional[str] = None

    @classmethod
    def from_json(cls, data: Any) -> "RefreshResponse":
        d = _require(data, "accessJwt", "refreshJwt", endpoint="refreshSession")
        return cls(access_jwt=str(d["accessJwt"]), refresh_jwt=str(d["refreshJwt"]), did=d.get("did") or None)


@dataclass(frozen=True)
class UploadResponse:
    blob: BlobRef

    @classmethod
    def from_json(cls, data: Any) -> "UploadResponse":
        d = _require(data, "blob", endpoint="uploadBlob")
        if not isinstance(d["blob"], dict):
            raise DecodingError("uploadBlob: 'blob' is not an object")
        try:
            parsed = models.get_or_create(d, models.ComAtprotoRepoUploadBlob.Response)
        except (ModelError, ValidationError) as e:
            raise DecodingError(f"uploadBlob: malformed blob ({e})") from e
        return cls(blob=parsed.blob)


@dataclass(frozen=True)
class CreateRecordResponse:
    uri: str
    cid: Optional[str] = None

    @classmethod
    def from_json(cls, data: Any) -> "CreateRecordResponse":
        d = _require(data, "uri", endpoint="createRecord")
        return cls(uri=str(d["uri"]), cid=d.get("cid") or None)


# ---------------- Record ----------------


def format_timestamp(dt: datetime) -> str:
    """RFC 3339 UTC with millisecond precision, e.g. 2024-05-01T12:00:00.123Z"""
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    dt = dt.astimezone(pytz.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class EmbeddedImage:
    blob_ref: BlobRef
    alt_text: str
    width: Optional[int] = None
    height: Optional[int] = None

    def to_model(self) -> models.AppBskyEmbedImages.Image:
        aspect = None
        if self.width and self.height:
            aspect = models.AppBskyEmbedDefs.AspectRatio(width=self.width, height=self.height)
        return models.AppBskyEmbedImages.Image(image=self.blob_ref, alt=self.alt_text, aspect_ratio=aspect)


@dataclass(frozen=True)
class PostRecord:
    """
    Everything that goes into one app.bsky.feed.post record.

    to_model() builds the atproto Record (facets and image embed included);
    it raises pydantic's ValidationError when a field breaks the lexicon
    limits. to_json() is the wire form sent to createRecord.
    """

    text: str
    created_at: datetime
    annotations: Tuple[Annotation, ...] = ()
    embedded_media: Tuple[EmbeddedImage, ...] = ()

    def to_model(self) -> models.AppBskyFeedPost.Record:
        embed = None
        if self.embedded_media:
            embed = models.AppBskyEmbedImages.Main(images=[img.to_model() for img in self.embedded_media])
        return models.AppBskyFeedPost.Record(
            text=self.text,
            created_at=format_timestamp(self.created_at),
            facets=to_facets(self.annotations) or None,
            embed=embed,
        )

    def to_json(self) -> Dict[str, Any]:
        return models.get_model_as_dict(self.to_model())


def parse_at_uri(uri: str) -> Tuple[str, str, str]:
    """
    Parse an at:// URI:
      at://did:plc:XXXX/app.bsky.feed.post/3m4abc... -> (repo_did, collection, rkey)
    """
    if not uri.startswith("at://"):
        raise ValueError(f"Not an at:// uri: {uri}")
    parts = uri[5:].split("/")
    if len(parts) < 3 or not all(parts):
        raise ValueError(f"Malformed at:// uri: {uri}")
    return parts[0], "/".join(parts[1:-1]), parts[-1]


# ---------------- Result ----------------


@dataclass
class SubmissionResult:
    """
    Terminal outcome of one submission.

    ok:      True only for success(uri)
    kind:    error kind on failure ("network", "auth", "upload", "post", "decoding")
    media:   encodings that were produced, so a caller can warn about
             images that could not be fit under budget
    state_history: SubmissionState values visited, in order
    """

    ok: bool
    uri: Optional[str] = None
    cid: Optional[str] = None
    kind: Optional[str] = None
    detail: str = ""
    error: Optional[PostingError] = field(default=None, repr=False)
    media: List[EncodedBlob] = field(default_factory=list)
    state_history: List[str] = field(default_factory=list)

    @classmethod
    def success(cls, uri: str, cid: Optional[str] = None, **kwargs) -> "SubmissionResult":
        return cls(ok=True, uri=uri, cid=cid, **kwargs)

    @classmethod
    def failure(cls, error: PostingError, **kwargs) -> "SubmissionResult":
        return cls(ok=False, kind=error.kind, detail=error.detail, error=error, **kwargs)

    @property
    def oversized_media(self) -> List[EncodedBlob]:
        return [m for m in self.media if not m.within_budget]

    def raise_for_error(self) -> None:
        if not self.ok and self.error is not None:
            raise self.error
