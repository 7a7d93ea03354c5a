"""Shared pytest fixtures and configuration

This file contains fixtures that can be used across all test files.
Pytest automatically discovers this file and makes fixtures available.
"""

import json
import random
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests
from atproto_client.models.blob_ref import BlobRef
from PIL import Image

from socials.bluesky_transport import BlueskyTransport
from socials.session_store import InMemoryCredentialPersistence, SessionStore
from socials.types import CreateRecordResponse, RefreshResponse, SessionResponse, UploadResponse

# ==================== Helpers ====================


def make_response(status_code, payload=None, text=None):
    """Build a real requests.Response so .json() / .text behave like the wire."""
    resp = requests.Response()
    resp.status_code = status_code
    if payload is not None:
        resp._content = json.dumps(payload).encode("utf-8")
    else:
        resp._content = (text or "").encode("utf-8")
    resp.encoding = "utf-8"
    return resp


def noise_image(width=128, height=128, seed=42):
    """Random RGB noise: compresses badly, so size tracks quality/scale reliably."""
    rng = random.Random(seed)
    return Image.frombytes("RGB", (width, height), rng.randbytes(width * height * 3))


def blob_ref(size=1024, cid="bafkreiblob"):
    """A server-issued image blob reference, as uploadBlob returns it"""
    return BlobRef(mime_type="image/jpeg", size=size, ref=cid)


AUTHENTICATED = {
    "identifier": "alice.bsky.social",
    "access_token": "access-1",
    "refresh_token": "refresh-1",
    "account_id": "did:plc:alice",
}


# ==================== Images ====================


@pytest.fixture
def solid_image():
    return Image.new("RGB", (200, 150), (30, 120, 200))


@pytest.fixture
def noisy_image():
    return noise_image()


@pytest.fixture
def colored_images():
    """Three small, visually distinct images (distinct JPEG bytes)."""
    return [Image.new("RGB", (64, 48), color) for color in ((255, 0, 0), (0, 255, 0), (0, 0, 255))]


# ==================== Transport / Session ====================


@pytest.fixture
def mock_transport():
    """A BlueskyTransport double whose calls all succeed by default"""
    transport = Mock(spec=BlueskyTransport)
    transport.create_session.return_value = SessionResponse(
        did="did:plc:alice", access_jwt="access-1", refresh_jwt="refresh-1"
    )
    transport.refresh_session.return_value = RefreshResponse(access_jwt="access-2", refresh_jwt="refresh-2")
    transport.upload_blob.return_value = UploadResponse(blob=blob_ref())
    transport.create_record.return_value = CreateRecordResponse(
        uri="at://did:plc:alice/app.bsky.feed.post/3kabc", cid="bafyrecord"
    )
    return transport


@pytest.fixture
def authenticated_store(mock_transport):
    return SessionStore(mock_transport, InMemoryCredentialPersistence(AUTHENTICATED))


@pytest.fixture
def refresh_only_store(mock_transport):
    """Access token gone, refresh token still valid"""
    data = dict(AUTHENTICATED, access_token=None)
    return SessionStore(mock_transport, InMemoryCredentialPersistence(data))


# ==================== File System Fixtures ====================


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
