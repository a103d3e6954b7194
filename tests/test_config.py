"""
Tests for runtime settings, logging setup and token helpers.
"""
import logging
from datetime import timedelta
from logging.handlers import RotatingFileHandler

import pytest

from hiready.core import config
from hiready.core.config import AccessSettings
from hiready.core.logging_config import REDACTED, sanitize_log_data, setup_logging
from hiready.core.security import create_access_token, decode_access_token


def test_default_settings():
    settings = AccessSettings()

    assert settings.free_trial_limit == 1
    assert settings.explicit_alpha == 0.6
    assert settings.inferred_alpha == 0.3
    assert settings.gap_threshold == 0.4
    assert settings.covered_threshold == 0.75


@pytest.mark.parametrize("overrides", [
    {"explicit_alpha": 0.0},
    {"inferred_alpha": 1.5},
    {"gap_threshold": 0.8, "covered_threshold": 0.5},
    {"free_trial_limit": -1},
    {"max_top_gaps": -2},
])
def test_invalid_settings_rejected(overrides):
    with pytest.raises(ValueError):
        AccessSettings().with_overrides(**overrides)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("HIREADY_FREE_TRIAL_LIMIT", "3")
    monkeypatch.setenv("HIREADY_COVERED_THRESHOLD", "0.8")

    settings = AccessSettings.from_env()

    assert settings.free_trial_limit == 3
    assert settings.covered_threshold == 0.8
    assert settings.gap_threshold == 0.4


def test_reload_settings_replaces_process_default(monkeypatch):
    monkeypatch.setenv("HIREADY_MAX_TOP_GAPS", "2")
    try:
        assert config.reload_settings().max_top_gaps == 2
        assert config.get_settings().max_top_gaps == 2
    finally:
        monkeypatch.delenv("HIREADY_MAX_TOP_GAPS")
        config.reload_settings()


def test_token_round_trip():
    token = create_access_token({"sub": "test@example.com"})

    assert decode_access_token(token) == "test@example.com"


def test_expired_or_garbage_token_decodes_to_none():
    expired = create_access_token({"sub": "test@example.com"}, expires_delta=timedelta(seconds=-5))

    assert decode_access_token(expired) is None
    assert decode_access_token("not-a-token") is None


def test_sanitize_log_data_masks_nested_values():
    data = {
        "type": "customer.subscription.created",
        "customer": "cus_ABC123456",
        "metadata": {"user_id": "5", "email": "jane@acme.com", "share_token": "tok-abcdef-123"},
        "stripe_webhook_secret": "whsec_live",
        "items": [{"api_key": "sk_live_1"}],
    }

    sanitized = sanitize_log_data(data)

    assert sanitized["type"] == "customer.subscription.created"
    assert sanitized["customer"] == "cus_****"
    assert sanitized["metadata"] == {"user_id": "5", "email": "***@acme.com", "share_token": "tok-****"}
    assert sanitized["stripe_webhook_secret"] == REDACTED
    assert sanitized["items"] == [{"api_key": REDACTED}]
    assert data["metadata"]["email"] == "jane@acme.com"


def test_sanitize_log_data_leaves_short_and_missing_values():
    assert sanitize_log_data({"token": "abc", "customer": None}) == {"token": "***", "customer": None}
    assert sanitize_log_data("plain") == "plain"


@pytest.fixture
def root_logger():
    """Put back pytest's own handlers after setup_logging replaces them."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_console_only_by_default(root_logger, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    setup_logging("debug")

    assert root_logger.level == logging.DEBUG
    assert len(root_logger.handlers) == 1
    assert not isinstance(root_logger.handlers[0], RotatingFileHandler)
    assert list(tmp_path.iterdir()) == []


def test_setup_logging_with_file(root_logger, tmp_path):
    log_file = tmp_path / "logs" / "hiready.log"

    setup_logging("WARNING", str(log_file))

    assert root_logger.level == logging.WARNING
    assert any(isinstance(handler, RotatingFileHandler) for handler in root_logger.handlers)
    assert log_file.parent.is_dir()
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
