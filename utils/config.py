from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from definitions import ROOT_DIR


def load_config(config_file):
    """
    Load configuration settings from a YAML file.

    Args:
        config_file (str | Path): The file path to the YAML configuration file.

    Returns:
        dict: The parsed configuration (an empty file yields an empty dict).

    Raises:
        FileNotFoundError: If the specified configuration file is not found.
        ValueError: If the file is not valid YAML or is not a mapping.

    Example Usage:
        config = load_config("config/config.yaml")
        print(config["bluesky"]["service_url"])
    """
    try:
        with open(config_file, encoding="utf-8") as file:
            config = yaml.safe_load(file)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file {config_file} not found.")
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML file: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(f"Configuration file {config_file} must contain a mapping at the top level.")
    return config


def _setting(section: dict, key: str, default):
    """section[key], falling back to `default` when the key is missing or null."""
    value = section.get(key)
    return default if value is None else value


@dataclass
class PipelineConfig:
    """Typed view over the `bluesky` and `media` sections of the YAML config."""

    service_url: str = "https://bsky.social/xrpc"
    timeout: float = 30.0
    user_agent: Optional[str] = None
    session_file: Optional[Path] = None

    max_blob_kb: int = 900
    start_quality: int = 90
    phase2_quality: int = 80
    quality_floor: int = 10
    quality_step: int = 10
    shrink_factor: float = 0.9
    scale_floor: float = 0.1
    max_upload_workers: int = 4
    alt_text: Optional[str] = None

    @property
    def budget_bytes(self) -> int:
        return int(self.max_blob_kb) * 1024

    @classmethod
    def from_dict(cls, config: Optional[dict]) -> "PipelineConfig":
        config = config or {}
        bsky = config.get("bluesky", {}) or {}
        media = config.get("media", {}) or {}
        defaults = cls()

        # Relative session files live under the project root, not the working directory
        session_file = bsky.get("session_file")
        if session_file:
            session_file = Path(session_file)
            if not session_file.is_absolute():
                session_file = ROOT_DIR / session_file

        return cls(
            service_url=bsky.get("service_url") or defaults.service_url,
            timeout=float(_setting(bsky, "timeout", defaults.timeout)),
            user_agent=bsky.get("user_agent"),
            session_file=session_file or None,
            max_blob_kb=int(_setting(media, "max_blob_kb", defaults.max_blob_kb)),
            start_quality=int(_setting(media, "start_quality", defaults.start_quality)),
            phase2_quality=int(_setting(media, "phase2_quality", defaults.phase2_quality)),
            quality_floor=int(_setting(media, "quality_floor", defaults.quality_floor)),
            quality_step=int(_setting(media, "quality_step", defaults.quality_step)),
            shrink_factor=float(_setting(media, "shrink_factor", defaults.shrink_factor)),
            scale_floor=float(_setting(media, "scale_floor", defaults.scale_floor)),
            max_upload_workers=int(_setting(media, "max_upload_workers", defaults.max_upload_workers)),
            alt_text=media.get("alt_text"),
        )
