# socials/publisher.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from core.media import MediaEncoder
from definitions import DEFAULT_CONFIG_FILE
from socials.bluesky_transport import BlueskyTransport
from socials.pipeline import DEFAULT_ALT_TEXT, PostingPipeline
from socials.session_store import InMemoryCredentialPersistence, JsonFileCredentialPersistence, SessionStore
from utils.config import PipelineConfig, load_config

logger = logging.getLogger(__name__)


def build_pipeline(config: Union[dict, str, Path, PipelineConfig, None] = None) -> PostingPipeline:
    """
    Wire transport, session store, encoder and pipeline from configuration.

    `config` may be a parsed dict, a path to a YAML file, or a PipelineConfig.
    With no argument, config/config.yaml is read when it exists. Credentials
    are persisted to `bluesky.session_file` when set, otherwise they only
    live in memory.
    """
    if config is None and DEFAULT_CONFIG_FILE.exists():
        config = DEFAULT_CONFIG_FILE
    if isinstance(config, (str, Path)):
        config = load_config(config)
    cfg = config if isinstance(config, PipelineConfig) else PipelineConfig.from_dict(config)

    transport = BlueskyTransport(
        service_url=cfg.service_url,
        timeout=cfg.timeout,
        user_agent=cfg.user_agent,
    )

    if cfg.session_file:
        persistence = JsonFileCredentialPersistence(cfg.session_file)
    else:
        persistence = InMemoryCredentialPersistence()
    store = SessionStore(transport, persistence)

    encoder = MediaEncoder(
        start_quality=cfg.start_quality,
        phase2_quality=cfg.phase2_quality,
        quality_floor=cfg.quality_floor,
        quality_step=cfg.quality_step,
        shrink_factor=cfg.shrink_factor,
        scale_floor=cfg.scale_floor,
    )

    logger.info(
        "Posting pipeline ready: service=%s timeout=%ss budget=%d KB session_file=%s",
        cfg.service_url,
        cfg.timeout,
        cfg.max_blob_kb,
        cfg.session_file,
    )
    return PostingPipeline(
        store,
        transport=transport,
        encoder=encoder,
        budget_bytes=cfg.budget_bytes,
        max_upload_workers=cfg.max_upload_workers,
        alt_text=cfg.alt_text or DEFAULT_ALT_TEXT,
    )
