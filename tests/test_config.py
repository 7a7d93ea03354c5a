"""
Tests for YAML configuration loading and pipeline wiring
"""

import pytest

from definitions import ROOT_DIR
from socials import publisher
from socials.publisher import build_pipeline
from socials.session_store import InMemoryCredentialPersistence, JsonFileCredentialPersistence
from utils.config import PipelineConfig, load_config

SAMPLE_YAML = """
script:
  log_file_name: skyposter
bluesky:
  service_url: https://pds.example/xrpc
  timeout: 12
  session_file: {session_file}
media:
  max_blob_kb: 500
  shrink_factor: 0.8
  max_upload_workers: 2
  alt_text: Photo from my walk
"""


class TestLoadConfig:
    def test_loads_yaml_mapping(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text(SAMPLE_YAML.format(session_file=temp_dir / "s.json"), encoding="utf-8")

        config = load_config(path)

        assert config["bluesky"]["timeout"] == 12
        assert config["media"]["max_blob_kb"] == 500

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            load_config(temp_dir / "nope.yaml")

    def test_invalid_yaml(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("bluesky: [unclosed", encoding="utf-8")

        with pytest.raises(ValueError):
            load_config(path)

    def test_empty_file_is_empty_config(self, temp_dir):
        path = temp_dir / "empty.yaml"
        path.write_text("", encoding="utf-8")

        assert load_config(path) == {}


class TestPipelineConfig:
    def test_defaults(self):
        cfg = PipelineConfig.from_dict({})

        assert cfg.service_url == "https://bsky.social/xrpc"
        assert cfg.budget_bytes == 900 * 1024
        assert cfg.session_file is None
        assert cfg.max_upload_workers == 4

    def test_reads_sections(self):
        cfg = PipelineConfig.from_dict(
            {"bluesky": {"timeout": "5", "session_file": "data/s.json"}, "media": {"max_blob_kb": 100}}
        )

        assert cfg.timeout == 5.0
        assert cfg.session_file == ROOT_DIR / "data" / "s.json"
        assert cfg.budget_bytes == 100 * 1024

    def test_absolute_session_file_is_kept(self, temp_dir):
        cfg = PipelineConfig.from_dict({"bluesky": {"session_file": str(temp_dir / "s.json")}})

        assert cfg.session_file == temp_dir / "s.json"

    def test_null_values_fall_back_to_defaults(self):
        """A key present but left empty in YAML loads as None"""
        cfg = PipelineConfig.from_dict(
            {"bluesky": {"timeout": None, "session_file": None}, "media": {"max_blob_kb": None, "shrink_factor": None}}
        )

        assert cfg.timeout == 30.0
        assert cfg.session_file is None
        assert cfg.budget_bytes == 900 * 1024
        assert cfg.shrink_factor == 0.9


class TestBuildPipeline:
    def test_from_yaml_path(self, temp_dir):
        path = temp_dir / "config.yaml"
        path.write_text(SAMPLE_YAML.format(session_file=temp_dir / "s.json"), encoding="utf-8")

        pipeline = build_pipeline(path)

        assert pipeline.transport.service_url == "https://pds.example/xrpc"
        assert pipeline.transport.timeout == 12.0
        assert pipeline.budget_bytes == 500 * 1024
        assert pipeline.max_upload_workers == 2
        assert pipeline.alt_text == "Photo from my walk"
        assert pipeline.encoder.shrink_factor == 0.8
        assert isinstance(pipeline.store.persistence, JsonFileCredentialPersistence)
        assert not pipeline.is_authenticated()

    def test_without_session_file_uses_memory(self):
        pipeline = build_pipeline({})

        assert isinstance(pipeline.store.persistence, InMemoryCredentialPersistence)
        assert pipeline.transport.session.headers["User-Agent"].startswith("skyposter/")

    def test_no_argument_reads_default_config_file(self, temp_dir, monkeypatch):
        path = temp_dir / "config.yaml"
        path.write_text(SAMPLE_YAML.format(session_file=temp_dir / "s.json"), encoding="utf-8")
        monkeypatch.setattr(publisher, "DEFAULT_CONFIG_FILE", path)

        pipeline = build_pipeline()

        assert pipeline.transport.service_url == "https://pds.example/xrpc"

    def test_no_argument_without_config_file_uses_defaults(self, temp_dir, monkeypatch):
        monkeypatch.setattr(publisher, "DEFAULT_CONFIG_FILE", temp_dir / "missing.yaml")

        pipeline = build_pipeline()

        assert pipeline.transport.service_url == "https://bsky.social/xrpc"
        assert isinstance(pipeline.store.persistence, InMemoryCredentialPersistence)
