"""Tests for ServiceServerConfig and Logger."""
import io

import pytest

from serviceserver.config import (
    LOG_DEBUG,
    LOG_ERROR,
    LOG_PRINT,
    LOG_VERBOSE,
    ConfigError,
    Logger,
    ServiceServerConfig,
    concat,
)

ENV_VARS = ['SERVICE_HASH', 'SERVICE_HOST', 'SERVICE_PORT', 'SERVICE_PRODUCT',
            'SERVICE_STATIC', 'SERVICE_SERVER_TYPE']


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestConcat:

    def test_default_separator(self):
        assert concat('a', 1, None) == 'a 1 None'

    def test_custom_separator(self):
        assert concat('a', 'b', sep=': ') == 'a: b'

    def test_unexpected_keyword(self):
        with pytest.raises(TypeError):
            concat('a', end='!')

    def test_config_error_message(self):
        assert str(ConfigError('Port must be', 8080)) == 'Port must be 8080'


class TestLogger:

    def setup_method(self):
        self.stream = io.StringIO()
        self.logger = Logger(LOG_PRINT, self.stream)

    def test_writes_prefixed_line(self):
        self.logger.log(LOG_PRINT, 'listening on', 8080)
        line = self.stream.getvalue()
        assert line.startswith('[')
        assert '] P listening on 8080\n' in line

    def test_filters_by_verbosity(self):
        self.logger.log(LOG_VERBOSE, 'hidden')
        self.logger.debug('also hidden', {'k': 1})
        assert self.stream.getvalue() == ''

    def test_error_shorthand(self):
        self.logger.error('route mapping failed')
        assert '] E route mapping failed' in self.stream.getvalue()

    def test_debug_with_context(self):
        logger = Logger(LOG_DEBUG, self.stream)
        logger.debug('invoke landed on base', {'k': 1})
        assert "] D invoke landed on base -- {'k': 1}" in self.stream.getvalue()

    def test_requires_arguments(self):
        with pytest.raises(TypeError):
            self.logger.log(LOG_ERROR)


class TestServiceServerConfig:

    def test_programmatic_defaults(self):
        config = ServiceServerConfig()
        assert config.product == 'ServiceServer'
        assert config.port is None
        assert config.server_type == 'Flask'
        assert isinstance(config.logger, Logger)

    def test_product_argument(self):
        assert ServiceServerConfig(product='Orator').product == 'Orator'

    def test_cmdline_defaults(self):
        config = ServiceServerConfig()
        config.parse(['serviceserver'])
        assert config.port == 8080
        assert config.host == '127.0.0.1'
        assert config.hash is None
        assert config.static is None
        assert config.static_route == '/static/*'
        assert config.service_options() == {'ServicePort': 8080, 'ServiceHost': '127.0.0.1'}

    def test_cmdline_options(self):
        config = ServiceServerConfig()
        config.parse(['serviceserver', '-p', '9090', '-H', '0.0.0.0', '--product', 'Orator',
                      '-t', 'Aiohttp', '--hash', 'Main', '-s', '/srv/www',
                      '--static-route', '/files/*'])
        assert config.port == 9090
        assert config.host == '0.0.0.0'
        assert config.product == 'Orator'
        assert config.server_type == 'Aiohttp'
        assert config.hash == 'Main'
        assert config.static == '/srv/www'
        assert config.static_route == '/files/*'

    def test_environment(self, monkeypatch):
        monkeypatch.setenv('SERVICE_PORT', '7000')
        monkeypatch.setenv('SERVICE_SERVER_TYPE', 'FastAPI')
        config = ServiceServerConfig()
        config.parse(['serviceserver'])
        assert config.port == 7000
        assert config.server_type == 'FastAPI'

    def test_command_line_beats_environment(self, monkeypatch):
        monkeypatch.setenv('SERVICE_PORT', '7000')
        config = ServiceServerConfig()
        config.parse(['serviceserver', '--port', '7001'])
        assert config.port == 7001

    def test_parsed_options_as_attributes(self):
        config = ServiceServerConfig()
        config.parse(['serviceserver', '-v'])
        assert config.v == 1
        assert config.verbose == LOG_VERBOSE
        assert config.logger.verbosity == LOG_VERBOSE

    def test_quiet(self):
        config = ServiceServerConfig()
        config.parse(['serviceserver', '-q'])
        assert config.logger.verbosity == LOG_ERROR

    def test_unexpected_arguments(self):
        with pytest.raises(ConfigError):
            ServiceServerConfig().parse(['serviceserver', 'extra'])

    def test_verbose_out_of_range(self):
        with pytest.raises(ConfigError):
            ServiceServerConfig().parse(['serviceserver', '--verbose', '9'])

    def test_port_out_of_range(self):
        with pytest.raises(ConfigError):
            ServiceServerConfig().parse(['serviceserver', '-p', '70000'])

    def test_version_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            ServiceServerConfig().parse(['serviceserver', '--version'])
        assert exc_info.value.code == 0
