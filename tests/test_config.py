"""
Unit tests for client configuration loading.
"""

from pathlib import Path

import pytest

from chat_client.config import ClientConfiguration, SESSION_FILE_NAME
from chat_shared.exceptions import ConfigurationError, ErrorCode

ENV_VARS = (
    'AUTH_HOST', 'AUTH_PORT', 'CHAT_HOST', 'CHAT_PORT',
    'CHAT_CLI_SESSION_FILE', 'CHAT_CLI_LOG_LEVEL', 'CHAT_CLI_LOG_FILE',
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "client.conf"
    path.write_text(
        "[auth]\n"
        "host = auth.example\n"
        "port = 50051\n"
        "\n"
        "[chat]\n"
        "host = chat.example\n"
        "port = 50052\n"
        "use_tls = true\n"
        "\n"
        "[session]\n"
        "refresh_interval = 120\n"
        "\n"
        "[logging]\n"
        "level = WARNING\n"
    )
    return str(path)


class TestClientConfiguration:
    """Test layered configuration."""

    def test_defaults(self, tmp_path):
        config = ClientConfiguration(str(tmp_path / "missing.conf"))

        assert config.get_session_file() == str(Path.cwd() / SESSION_FILE_NAME)
        assert config.get_refresh_interval() == 82800
        assert config.get_access_interval() == 840
        assert config.get_request_timeout() == 20.0
        assert config.get_log_level() == 'INFO'
        assert config.get_log_format() == 'standard'
        assert config.get_log_file() is None

    def test_file_values(self, config_file):
        config = ClientConfiguration(config_file)

        assert config.get_auth_address() == "http://auth.example:50051"
        assert config.get_chat_address() == "https://chat.example:50052"
        assert config.get_refresh_interval() == 120
        assert config.get_access_interval() == 840
        assert config.get_log_level() == 'WARNING'

    def test_environment_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv('AUTH_HOST', 'localhost')
        monkeypatch.setenv('AUTH_PORT', '9000')
        monkeypatch.setenv('CHAT_CLI_SESSION_FILE', '/tmp/sessions/s')

        config = ClientConfiguration(config_file)

        assert config.get_auth_address() == "http://localhost:9000"
        assert config.get_session_file() == '/tmp/sessions/s'

    def test_overrides_win(self, config_file, monkeypatch):
        monkeypatch.setenv('CHAT_CLI_LOG_LEVEL', 'ERROR')
        config = ClientConfiguration(config_file)

        config.set_override('log_level', 'DEBUG')
        config.set_override('session_file', '/tmp/override')

        assert config.get_log_level() == 'DEBUG'
        assert config.get_session_file() == '/tmp/override'

    def test_missing_host_raises(self, tmp_path):
        config = ClientConfiguration(str(tmp_path / "missing.conf"))

        with pytest.raises(ConfigurationError) as exc_info:
            config.get_auth_address()

        assert exc_info.value.error_code == ErrorCode.CONFIG_MISSING_REQUIRED_SETTING
        assert exc_info.value.context['config_key'] == 'auth.host'

    def test_address_without_port(self, tmp_path, monkeypatch):
        monkeypatch.setenv('CHAT_HOST', 'chat.local')

        config = ClientConfiguration(str(tmp_path / "missing.conf"))

        assert config.get_chat_address() == "http://chat.local"

    def test_invalid_interval(self, tmp_path):
        path = tmp_path / "client.conf"
        path.write_text("[session]\naccess_interval = -5\nrefresh_interval = soon\n")
        config = ClientConfiguration(str(path))

        with pytest.raises(ConfigurationError):
            config.get_access_interval()
        with pytest.raises(ConfigurationError) as exc_info:
            config.get_refresh_interval()

        assert exc_info.value.error_code == ErrorCode.CONFIG_INVALID_VALUE

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "client.conf"
        path.write_text("this is not an ini file\n")

        with pytest.raises(ConfigurationError) as exc_info:
            ClientConfiguration(str(path))

        assert exc_info.value.error_code == ErrorCode.CONFIG_INVALID_FORMAT

    def test_dot_notation(self, config_file):
        config = ClientConfiguration(config_file)

        assert config.get_config('chat.port') == 50052
        assert config.get_config('server.retry_attempts') == 3
        assert config.get_config('nope.key', 'fallback') == 'fallback'

    def test_ca_file_requires_tls(self, tmp_path):
        path = tmp_path / "client.conf"
        path.write_text("[auth]\nhost = auth.example\nca_file = \"/etc/ca.pem\"\n")
        config = ClientConfiguration(str(path))

        with pytest.raises(ConfigurationError) as exc_info:
            config.get_auth_address()

        assert exc_info.value.error_code == ErrorCode.CONFIG_INVALID_VALUE
        assert exc_info.value.context['config_key'] == 'auth.use_tls'

    def test_ca_file_with_tls(self, tmp_path):
        path = tmp_path / "client.conf"
        path.write_text("[auth]\nhost = auth.example\nca_file = \"/etc/ca.pem\"\nuse_tls = true\n")
        config = ClientConfiguration(str(path))

        assert config.get_auth_address() == "https://auth.example"
        assert config.get_ca_file('auth') == "/etc/ca.pem"
