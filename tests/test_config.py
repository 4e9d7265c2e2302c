from __future__ import annotations

from pathlib import Path

import pytest

from semtag.config import DEFAULT_EXCLUDE_PATTERNS, IndexerConfig, IndexerSettings
from semtag.registry.concept_registry import DEFAULT_REGISTRY_PATH


def test_settings_defaults_from_empty_environment() -> None:
    settings = IndexerSettings.from_env({})

    assert settings.vault_path == Path("vault")
    assert settings.registry_path == DEFAULT_REGISTRY_PATH
    assert settings.indexer == IndexerConfig()
    assert settings.indexer.exclude_patterns == DEFAULT_EXCLUDE_PATTERNS


def test_settings_read_overrides() -> None:
    settings = IndexerSettings.from_env(
        {
            "SEMTAG_VAULT_PATH": "/data/vault",
            "SEMTAG_REGISTRY_PATH": "meta/registry.json",
            "SEMTAG_MAX_FILES": "10",
            "SEMTAG_MAX_RELATION_FILES": "5",
            "SEMTAG_MAX_RELATED_CONCEPTS": "3",
            "SEMTAG_BATCH_SIZE": "2",
            "SEMTAG_EXCLUDE_PATTERNS": " drafts , ,private",
            "SEMTAG_MODEL_NAME": "gpt-4o",
        }
    )

    assert settings.vault_path == Path("/data/vault")
    assert settings.registry_path == "meta/registry.json"
    assert settings.indexer.max_files == 10
    assert settings.indexer.max_relation_files == 5
    assert settings.indexer.max_related_concepts == 3
    assert settings.indexer.batch_size == 2
    assert settings.indexer.exclude_patterns == ("drafts", "private")
    assert settings.indexer.model_name == "gpt-4o"


def test_empty_exclude_patterns_disable_filtering() -> None:
    assert IndexerSettings.from_env({"SEMTAG_EXCLUDE_PATTERNS": ""}).indexer.exclude_patterns == ()


@pytest.mark.parametrize(
    "environ",
    [
        {"SEMTAG_VAULT_PATH": "  "},
        {"SEMTAG_REGISTRY_PATH": ""},
        {"SEMTAG_MAX_FILES": "0"},
        {"SEMTAG_BATCH_SIZE": "many"},
        {"SEMTAG_MODEL_NAME": " "},
    ],
)
def test_invalid_settings_raise(environ: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        IndexerSettings.from_env(environ)


def test_indexer_config_validates_limits() -> None:
    with pytest.raises(ValueError):
        IndexerConfig(max_relation_files=0)
    with pytest.raises(ValueError):
        IndexerConfig(batch_delay_seconds=-1)
