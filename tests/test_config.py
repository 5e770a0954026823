import os

import pytest

from signal_relay.core.config import Config, ConfigValidationError

ENV_KEYS = (
    "HOST", "PORT", "THREADS", "DB_PATH", "LOG_DIR", "LOG_LEVEL", "RELAY_URL", "RELAY_TOKEN",
    "RELAY_SYNC_SECONDS", "WEBHOOK_SECRET_KEY", "TELEGRAM_TOKEN", "TELEGRAM_CHAT_ID",
    "ACCOUNT_BALANCE", "DEDUP_CACHE_SIZE", "GROUP_RETENTION_DAYS", "RISK_CHECK_SECONDS",
)


@pytest.fixture(autouse=True)
def isolated_environ(monkeypatch):
    """load_dotenv writes into os.environ; keep every test on a private copy."""
    environ = {k: v for k, v in os.environ.items() if k not in ENV_KEYS}
    monkeypatch.setattr(os, "environ", environ)
    return environ


@pytest.fixture
def write_env(tmp_path):
    def _write(**values):
        values.setdefault("DB_PATH", str(tmp_path / "data" / "relay.db"))
        path = tmp_path / "primary.env"
        path.write_text("\n".join(f"{k}={v}" for k, v in values.items()) + "\n")
        return path
    return _write


def test_defaults(write_env, tmp_path):
    config = Config(write_env())

    assert config.port == 3737
    assert config.host == "0.0.0.0"
    assert config.account_balance == 10000.0
    assert config.dedup_cache_size == 1000
    assert not config.is_relay_enabled()
    assert not config.is_telegram_enabled()
    assert (tmp_path / "data").is_dir()


def test_inline_comments_are_stripped(write_env):
    config = Config(write_env(PORT="4000  # agent port", LOG_LEVEL="debug"))
    assert config.port == 4000
    assert config.log_level == "DEBUG"


def test_privileged_port_rejected(write_env):
    with pytest.raises(ConfigValidationError):
        Config(write_env(PORT="80"))


def test_relay_enabled(write_env):
    config = Config(write_env(RELAY_URL="https://relay.example.com/api/", RELAY_TOKEN="tok"))

    assert config.is_relay_enabled()
    assert config.get_relay_config() == {"base_url": "https://relay.example.com/api", "token": "tok"}


def test_relay_url_scheme(write_env):
    with pytest.raises(ConfigValidationError):
        Config(write_env(RELAY_URL="relay.example.com", RELAY_TOKEN="tok"))


def test_telegram_chat_id_must_be_numeric(write_env):
    with pytest.raises(ConfigValidationError):
        Config(write_env(TELEGRAM_TOKEN="123:abc", TELEGRAM_CHAT_ID="my-chat"))


def test_partial_telegram_is_disabled(write_env):
    config = Config(write_env(TELEGRAM_TOKEN="123:abc"))
    assert not config.is_telegram_enabled()


def test_missing_env_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config(tmp_path / "absent.env")


def test_summary_masks_credentials(write_env):
    config = Config(write_env(RELAY_URL="https://relay.example.com", RELAY_TOKEN="abcdef123"))
    summary = config.get_config_summary(include_sensitive=True)

    assert summary["features"]["relay_enabled"] is True
    assert summary["credentials_status"]["relay_token"] == "ab***23"
    assert summary["credentials_status"]["webhook_secret"] == "***MISSING***"
