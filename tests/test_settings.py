"""Tests for configuration settings."""
from pathlib import Path

import pytest

from config.settings import Settings

pytestmark = pytest.mark.unit


def test_defaults(monkeypatch):
    """Defaults apply when nothing is configured."""
    monkeypatch.delenv("ADVISOR_DATA_PATH", raising=False)
    monkeypatch.delenv("ADVISOR_SEMANTIC_EXTRACTOR", raising=False)
    settings = Settings(_env_file=None)

    assert settings.data_path == Path("./data")
    assert settings.crm_db_path == Path("./data/crm.db")
    assert settings.duplicate_match_threshold == 0.60
    assert settings.periodic_throttle_seconds == 300.0
    assert settings.change_throttle_seconds == 10.0
    assert settings.semantic_extractor_enabled is False


def test_aliases(tmp_path):
    """Settings are set through their ADVISOR_ aliases."""
    settings = Settings(
        _env_file=None,
        ADVISOR_DATA_PATH=tmp_path,
        ADVISOR_CALENDAR_ID="work",
        ADVISOR_CONTACTS_GROUP="*",
    )

    assert settings.crm_db_path == tmp_path / "crm.db"
    assert settings.calendar_identifier == "work"
    assert settings.contacts_group_identifier == "*"


def test_environment(monkeypatch):
    """Environment variables override defaults."""
    monkeypatch.setenv("ADVISOR_SEMANTIC_EXTRACTOR", "true")
    monkeypatch.setenv("ADVISOR_CHANGE_THROTTLE", "2.5")
    settings = Settings(_env_file=None)

    assert settings.semantic_extractor_enabled is True
    assert settings.change_throttle_seconds == 2.5
