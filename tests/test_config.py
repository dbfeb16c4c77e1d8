from __future__ import annotations

import pytest

from shiftboard.config import AppConfig, load_app_config, load_security_settings, upsert_app_config
from shiftboard.database import get_app_config_record
from shiftboard.errors import ConfigurationError, ValidationError


def test_environment_fallback():
    config = load_app_config(environ={"APP_URL": "https://env.example.com", "MANAGER_EMAIL": "Boss@Example.com"})
    assert config.app_url == "https://env.example.com"
    assert config.manager_email == "boss@example.com"
    assert config.timeoff_min_days == 7
    assert load_app_config(environ={"TIMEOFF_MIN_DAYS": "nope"}).timeoff_min_days == 7


def test_record_overrides_environment(session):
    upsert_app_config(session, {"appUrl": "https://db.example.com", "timeoffMinDays": 14}, edited_by="boss")
    config = load_app_config(session, environ={"APP_URL": "https://env.example.com", "TIMEOFF_MIN_DAYS": "3"})
    assert config.app_url == "https://db.example.com"
    assert config.timeoff_min_days == 14


def test_upsert_merges_and_tracks_editor(session):
    upsert_app_config(session, {"appUrl": "https://db.example.com"}, edited_by="first")
    config = upsert_app_config(session, {"managerEmail": " Chef@Example.com "}, edited_by="second")
    assert config.app_url == "https://db.example.com"
    assert config.manager_email == "chef@example.com"
    record = get_app_config_record(session)
    assert record.lastEditedBy == "second"


def test_upsert_rejects_bad_values(session):
    with pytest.raises(ValidationError):
        upsert_app_config(session, {"theme": "dark"})
    with pytest.raises(ValidationError):
        upsert_app_config(session, {"timeoffMinDays": -1})
    with pytest.raises(ValidationError):
        upsert_app_config(session, {"timeoffMinDays": "soon"})


def test_link_requires_app_url():
    assert AppConfig(app_url="https://x.example.com/").link("/dashboard") == "https://x.example.com/dashboard"
    with pytest.raises(ConfigurationError):
        AppConfig().link("/dashboard")


def test_security_settings_need_a_secret():
    with pytest.raises(ConfigurationError):
        load_security_settings({})
    settings = load_security_settings({"SHIFTBOARD_SECRET_KEY": "s3cret"})
    assert settings.algorithm == "HS256"
