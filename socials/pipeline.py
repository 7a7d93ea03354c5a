# socials/pipeline.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import pytz
from PIL import Image

from core.media import DEFAULT_BUDGET_BYTES, EncodedBlob, ImageEncodingError, MediaAsset, MediaEncoder
from core.richtext import compose_text, iter_annotations
from socials.base import Post
from socials.bluesky_transport import BlueskyTransport
from socials.errors import AuthError, NetworkError, PostingError, UploadError
from socials.session_store import SessionStore
from socials.types import BlobRef, CreateRecordResponse, Credentials, EmbeddedImage, PostRecord, SubmissionResult
from utils.others import format_kb

logger = logging.getLogger(__name__)

DEFAULT_ALT_TEXT = "Image uploaded with skyposter"
MAX_UPLOAD_WORKERS = 4

ImageInput = Union[MediaAsset, Image.Image]


class SubmissionState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    UPLOADING_MEDIA = "uploading_media"
    CREATING_RECORD = "creating_record"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PostingPipeline:
    """
    Upload-then-create posting over one Bluesky session.

    submit() walks IDLE -> [AUTHENTICATING] -> UPLOADING_MEDIA -> CREATING_RECORD
    and ends in SUCCEEDED or FAILED:

      - An unusable session gets exactly one refresh attempt; if that fails
        the caller must log in again (AuthError.REQUIRED). No silent re-login.
      - Images are encoded and uploaded with bounded concurrency; the first
        failure aborts before any record exists. Uploaded blobs are left for
        the server to garbage collect.
      - The record embeds images in input order, whatever order uploads finish.
      - No retries beyond the single refresh.

    Every remote failure comes back as SubmissionResult.failure(...), never
    as a raw requests exception. The states walked are kept on
    result.state_history, and `state` holds the latest one.
    """

    def __init__(
        self,
        store: SessionStore,
        transport: Optional[BlueskyTransport] = None,
        encoder: Optional[MediaEncoder] = None,
        budget_bytes: int = DEFAULT_BUDGET_BYTES,
        max_upload_workers: int = MAX_UPLOAD_WORKERS,
        alt_text: str = DEFAULT_ALT_TEXT,
    ):
        self.store = store
        self.transport = transport or store.transport
        self.encoder = encoder or MediaEncoder()
        self.budget_bytes = budget_bytes
        self.max_upload_workers = max(1, min(max_upload_workers, MAX_UPLOAD_WORKERS))
        self.alt_text = alt_text
        # State of the most recent submit(); concurrent submissions share it
        self.state = SubmissionState.IDLE

    # ---------------- Session ----------------

    def login(self, identifier: str, secret: str) -> Credentials:
        return self.store.login(identifier, secret)

    def logout(self) -> None:
        self.store.clear()

    def is_authenticated(self) -> bool:
        return self.store.is_authenticated()

    def _ensure_session(self) -> None:
        try:
            self.store.ensure_authenticated()
        except PostingError as e:
            logger.warning("Session refresh failed (%s); login required.", e.detail)
            raise AuthError(AuthError.REQUIRED, "Please log in to Bluesky again", e.status_code) from e

        if not self.store.is_authenticated():
            raise AuthError(AuthError.REQUIRED, "Please log in to Bluesky again")

    # ---------------- Media ----------------

    def _encode_and_upload(self, index: int, image: ImageInput, access_token: str) -> Tuple[EncodedBlob, BlobRef]:
        try:
            blob = self.encoder.encode(image, self.budget_bytes)
        except (ImageEncodingError, OSError, ValueError) as e:
            raise UploadError(f"Image {index + 1} could not be encoded: {e}") from e

        logger.info(
            "Uploading image %d: %dx%d, %s (quality=%s)",
            index + 1,
            blob.width,
            blob.height,
            format_kb(blob.size_bytes),
            blob.quality,
        )
        try:
            uploaded = self.transport.upload_blob(access_token, blob.data)
        except NetworkError as e:
            raise UploadError(f"Image {index + 1}: {e.detail}") from e
        return blob, uploaded.blob

    def upload_media(
        self, images: Sequence[ImageInput], access_token: str, media: Optional[List[EncodedBlob]] = None
    ) -> List[Tuple[EncodedBlob, BlobRef]]:
        """
        Encode + upload every image and return (encoding, blob ref) pairs in input order.
        `media`, when given, collects the encodings that finished (for reporting).
        """
        if not images:
            return []

        results: List[Optional[Tuple[EncodedBlob, BlobRef]]] = [None] * len(images)
        workers = min(len(images), self.max_upload_workers)

        try:
            if workers == 1:
                for i, image in enumerate(images):
                    results[i] = self._encode_and_upload(i, image, access_token)
            else:
                with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bsky-upload") as pool:
                    futures = {
                        pool.submit(self._encode_and_upload, i, image, access_token): i for i, image in enumerate(images)
                    }
                    try:
                        for fut in as_completed(futures):
                            results[futures[fut]] = fut.result()
                    except PostingError:
                        for fut in futures:
                            fut.cancel()
                        raise
        finally:
            if media is not None:
                media.extend(r[0] for r in results if r is not None)

        return [r for r in results if r is not None]

    # ---------------- Record ----------------

    def build_record(
        self,
        text: str,
        uploaded: Iterable[Tuple[EncodedBlob, BlobRef]] = (),
        hashtags: Optional[Iterable[str]] = None,
        alt_text: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> PostRecord:
        full_text = compose_text(text, hashtags)
        alt = alt_text or self.alt_text
        return PostRecord(
            text=full_text,
            created_at=created_at or datetime.now(pytz.utc),
            annotations=tuple(iter_annotations(full_text)),
            embedded_media=tuple(
                EmbeddedImage(blob_ref=ref, alt_text=alt, width=blob.width, height=blob.height)
                for blob, ref in uploaded
            ),
        )

    def _create_record(self, record: PostRecord) -> CreateRecordResponse:
        try:
            return self.transport.create_record(self.store.access_token, self.store.account_id, record)
        except AuthError as e:
            # Token expired between the pre-check and now: surface as "log in again"
            raise AuthError(AuthError.REQUIRED, "Session expired while posting; please log in again", e.status_code) from e

    # ---------------- Public API ----------------

    def _transition(self, history: List[SubmissionState], state: SubmissionState) -> None:
        self.state = state
        history.append(state)

    def submit(
        self,
        text: str,
        images: Sequence[ImageInput] = (),
        hashtags: Optional[Iterable[str]] = None,
        alt_text: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Post `text` (plus appended hashtags) with `images` embedded in order.

        Returns SubmissionResult.success(uri) or SubmissionResult.failure(kind, detail).
        """
        history: List[SubmissionState] = []
        self._transition(history, SubmissionState.IDLE)
        media: List[EncodedBlob] = []
        images = list(images or [])

        logger.info("Submitting post: %d chars, %d image(s)", len(text or ""), len(images))

        try:
            if not self.store.is_authenticated():
                self._transition(history, SubmissionState.AUTHENTICATING)
                self._ensure_session()

            self._transition(history, SubmissionState.UPLOADING_MEDIA)
            uploaded = self.upload_media(images, self.store.access_token, media)

            self._transition(history, SubmissionState.CREATING_RECORD)
            record = self.build_record(text or "", uploaded, hashtags=hashtags, alt_text=alt_text)
            created = self._create_record(record)
        except PostingError as e:
            self._transition(history, SubmissionState.FAILED)
            logger.warning("Submission failed [%s]: %s", e.kind, e.detail)
            return SubmissionResult.failure(e, media=media, state_history=history)

        self._transition(history, SubmissionState.SUCCEEDED)
        for blob in media:
            if not blob.within_budget:
                logger.warning(
                    "Posted an image over the %s budget (%s)", format_kb(blob.budget_bytes), format_kb(blob.size_bytes)
                )
        logger.info("Post created: %s", created.uri)
        return SubmissionResult.success(created.uri, created.cid, media=media, state_history=history)

    def submit_post(self, post: Post) -> SubmissionResult:
        return self.submit(post.text, post.images, hashtags=post.hashtags, alt_text=post.alt_text)
