"""Tests for configuration loading."""

import pytest
import yaml

from feed_relay.services.announcement_stream.src.config.settings import (
    ConfigurationError,
    build_config,
    load_config,
)


MINIMAL = {
    'binance': {
        'api_key': '${BINANCE_API_KEY}',
        'api_secret': '${BINANCE_SECRET_KEY}',
        'proxy_url': '${BINANCE_PROXY_URL:}',
    },
    'retry': {'max_attempts': '${RECONNECT_MAX_ATTEMPTS:10}'},
    'logging': {'level': '${LOG_LEVEL:INFO}'},
}


@pytest.fixture
def credentials(monkeypatch):
    monkeypatch.setenv('BINANCE_API_KEY', 'key')
    monkeypatch.setenv('BINANCE_SECRET_KEY', 'secret')
    for name in ('BINANCE_PROXY_URL', 'RECONNECT_MAX_ATTEMPTS', 'LOG_LEVEL'):
        monkeypatch.delenv(name, raising=False)


@pytest.mark.unit
class TestBuildConfig:

    def test_defaults(self, credentials):
        config = build_config(MINIMAL)

        assert config.binance.api_key == 'key'
        assert config.binance.api_secret == 'secret'
        assert config.binance.proxy_url is None
        assert config.binance.topics == ['com_announcement_en']
        assert config.retry.max_attempts == 10
        assert config.retry.initial_backoff_seconds == 5.0
        assert config.retry.max_backoff_seconds == 30.0
        assert config.stream.ping_interval_seconds == 30.0
        assert config.stream.rotation_interval_seconds == 82800
        assert config.stream.probe_ack_timeout_seconds == 0
        assert config.logging.level == 'INFO'

    def test_env_overrides(self, credentials, monkeypatch):
        monkeypatch.setenv('BINANCE_PROXY_URL', 'socks5://127.0.0.1:1080')
        monkeypatch.setenv('RECONNECT_MAX_ATTEMPTS', '3')
        monkeypatch.setenv('LOG_LEVEL', 'DEBUG')

        config = build_config(MINIMAL)

        assert config.binance.proxy_url == 'socks5://127.0.0.1:1080'
        assert config.retry.max_attempts == 3
        assert config.logging.level == 'DEBUG'

    def test_comma_separated_topics(self, credentials):
        data = {'binance': {**MINIMAL['binance'], 'topics': 'com_announcement_en,com_listing'}}
        assert build_config(data).binance.topics == ['com_announcement_en', 'com_listing']

    def test_boolean_strings(self, credentials):
        data = {**MINIMAL, 'metrics': {'enabled': 'true', 'port': '9100'}}
        config = build_config(data)
        assert config.metrics.enabled is True
        assert config.metrics.port == 9100

    def test_missing_credentials(self, monkeypatch):
        monkeypatch.delenv('BINANCE_API_KEY', raising=False)
        monkeypatch.delenv('BINANCE_SECRET_KEY', raising=False)
        with pytest.raises(ConfigurationError):
            build_config(MINIMAL)

    def test_unknown_key_rejected(self, credentials):
        data = {**MINIMAL, 'stream': {'bogus': 1}}
        with pytest.raises(ConfigurationError):
            build_config(data)

    def test_empty_topics_rejected(self, credentials):
        data = {'binance': {**MINIMAL['binance'], 'topics': ''}}
        with pytest.raises(ConfigurationError):
            build_config(data)


@pytest.mark.unit
class TestLoadConfig:

    def test_load_from_file(self, credentials, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump(MINIMAL))

        config = load_config(str(path))
        assert config.binance.api_key == 'key'
        assert config.health.port == 8080
