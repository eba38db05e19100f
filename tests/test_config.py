import base64
import json
import logging

import pytest

from unifi_discovery import config
from unifi_discovery.__main__ import parse_settings, setup_logging
from unifi_discovery.config import Settings


class _SecretsManager:
    def __init__(self, resp):
        self.resp = resp
        self.calls = []

    def get_secret_value(self, SecretId=None):
        self.calls.append(SecretId)
        return self.resp


@pytest.fixture
def secrets(monkeypatch):
    monkeypatch.setattr(config, "_cached_secrets", {})

    def _install(resp):
        sm = _SecretsManager(resp)
        monkeypatch.setattr(config, "_secrets_client", lambda: sm)
        return sm
    return _install


def test_defaults():
    s = Settings.from_env({})

    assert s.port == 8080
    assert s.unifi_host == "192.168.0.1"
    assert s.api_key == ""
    assert s.api_secret_arn is None
    assert s.verify_tls is False
    assert s.log_level == "INFO"


def test_env_overrides():
    s = Settings.from_env({
        "PORT": "9100",
        "UNIFI_HOST": "10.1.1.1",
        "UNIFI_API_KEY": "k",
        "UNIFI_REQUEST_TIMEOUT": "7.5",
        "UNIFI_VERIFY_TLS": "TRUE",
        "LOG_LEVEL": "debug",
    })

    assert s.port == 9100
    assert s.unifi_host == "10.1.1.1"
    assert s.api_key == "k"
    assert s.request_timeout == 7.5
    assert s.verify_tls is True
    assert s.log_level == "DEBUG"


def test_flags_override_env():
    s = parse_settings(
        ["--port", "9200", "--unifi-host", "unifi.lan", "--verify-tls"],
        {"PORT": "9100", "UNIFI_HOST": "10.1.1.1", "UNIFI_API_KEY": "from-env"},
    )

    assert s.port == 9200
    assert s.unifi_host == "unifi.lan"
    assert s.api_key == "from-env"
    assert s.verify_tls is True


def test_explicit_key_skips_secrets(secrets):
    sm = secrets({"SecretString": json.dumps({"apiKey": "nope"})})

    assert Settings(api_key="k", api_secret_arn="arn:x").resolve_api_key() == "k"
    assert sm.calls == []


def test_no_key_no_secret():
    assert Settings().resolve_api_key() == ""


def test_key_from_secret_string_is_cached(secrets):
    sm = secrets({"SecretString": json.dumps({"apiKey": "from-sm"})})
    s = Settings(api_secret_arn="arn:aws:secretsmanager:eu-west-1:1:secret:unifi")

    assert s.resolve_api_key() == "from-sm"
    assert s.resolve_api_key() == "from-sm"
    assert sm.calls == ["arn:aws:secretsmanager:eu-west-1:1:secret:unifi"]


def test_key_from_secret_binary(secrets):
    secrets({"SecretBinary": base64.b64encode(json.dumps({"apiKey": "bin"}).encode())})

    assert Settings(api_secret_arn="arn:bin").resolve_api_key() == "bin"


def test_secret_without_key(secrets):
    secrets({"SecretString": json.dumps({"other": "x"})})

    with pytest.raises(RuntimeError, match="apiKey"):
        Settings(api_secret_arn="arn:empty").resolve_api_key()


@pytest.fixture
def package_logger():
    logger = logging.getLogger("unifi_discovery")
    saved = (logger.level, logger.handlers[:], logger.propagate)
    yield logger
    logger.level, logger.handlers, logger.propagate = saved


def test_setup_logging_owns_package_logger(package_logger):
    logger = setup_logging("debug")

    assert logger is package_logger
    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert logger.propagate is False
    assert logging.getLogger("unifi_discovery.server").getEffectiveLevel() == logging.DEBUG


def test_setup_logging_unknown_level_falls_back_to_info(package_logger):
    setup_logging("chatty")
    assert package_logger.level == logging.INFO

    setup_logging("warning")

    assert package_logger.level == logging.WARNING
    assert len(package_logger.handlers) == 1
