"""Tests for FlaskServiceServer."""
import socket
import urllib.request
from unittest import mock

import pytest

from serviceserver.config import ServiceServerConfig
from serviceserver.routing import HandlerError
from serviceserver.transports.flask import FlaskServiceServer

from conftest import RecordingLog, noop_handler


def hello(request, response, next_handler):
    response.send({'hello': request.params.get('name'), 'query': request.query})


def echo_body(request, response, next_handler):
    response.send({'body': request.body})


def which(name):
    def handler(request, response, next_handler):
        response.set_header('X-Which', name)
        response.send(status_code=200)
    return handler


class TestFlaskRoutes:

    def setup_method(self):
        self.log = RecordingLog()
        self.server = FlaskServiceServer(ServiceServerConfig(product='Test'),
                                         {'ServicePort': 0}, 'flask-test', log=self.log)
        self.client = self.server.app.test_client()

    def test_type(self):
        assert self.server.service_server_type == 'Flask'
        assert self.server.service_type == 'ServiceServer'
        assert self.server.port == 0
        assert self.server.hash == 'flask-test'

    def test_get_with_path_params(self):
        assert self.server.get('/hello/:name', hello) is True
        response = self.client.get('/hello/world?lang=en')
        assert response.status_code == 200
        assert response.get_json() == {'hello': 'world', 'query': {'lang': 'en'}}

    @pytest.mark.parametrize('verb', ['put', 'post', 'delete', 'patch', 'options'])
    def test_each_verb(self, verb):
        assert getattr(self.server, verb)('/items', hello) is True
        response = self.client.open('/items', method=verb.upper())
        assert response.status_code == 200

    def test_head_delegates(self):
        def head_only(request, response, next_handler):
            response.set_header('X-Count', '3')
            response.send(status_code=200)

        assert self.server.head('/items', head_only) is True
        response = self.client.head('/items')
        assert response.status_code == 200
        assert response.headers['X-Count'] == '3'

    def test_head_after_get_on_same_path(self):
        self.server.get('/items', which('get'))
        assert self.server.head('/items', which('head')) is True
        assert self.client.head('/items').headers['X-Which'] == 'head'
        assert self.client.get('/items').headers['X-Which'] == 'get'
        assert self.log.errors == []

    def test_head_before_get_on_same_path(self):
        assert self.server.head('/items', which('head')) is True
        self.server.get('/items', which('get'))
        assert self.client.head('/items').headers['X-Which'] == 'head'
        assert self.client.get('/items').headers['X-Which'] == 'get'

    def test_get_answers_head_without_head_handlers(self):
        self.server.get('/items', which('get'))
        assert self.client.head('/items').headers['X-Which'] == 'get'

    def test_duplicate_head(self):
        self.server.get('/items', which('get'))
        assert self.server.head('/items', which('head')) is True
        assert self.server.head('/items', which('again')) is False
        assert 'already mapped' in self.log.errors[0]

    def test_invalid_route_is_not_mapped(self):
        assert self.server.get(42, hello) is False
        assert 'GET' in self.log.errors[0]
        assert list(self.server.app.url_map.iter_rules()) == []

    def test_duplicate_route(self):
        assert self.server.get('/twice', hello) is True
        assert self.server.get('/twice', hello) is False
        assert 'already mapped' in self.log.errors[0]

    def test_wildcard(self):
        def tail(request, response, next_handler):
            response.send(request.params['wildcard'])

        assert self.server.get('/files/*', tail) is True
        response = self.client.get('/files/a/b/c.txt')
        assert response.get_data(as_text=True) == 'a/b/c.txt'

    def test_post_with_body_parser(self):
        assert self.server.post_with_body_parser('/echo', echo_body) is True
        response = self.client.post('/echo', json={'a': 1})
        assert response.get_json() == {'body': {'a': 1}}

    def test_body_not_parsed_without_body_parser(self):
        assert self.server.post('/echo', echo_body) is True
        response = self.client.post('/echo', json={'a': 1})
        assert response.get_json() == {'body': None}

    def test_malformed_body(self):
        assert self.server.post_with_body_parser('/echo', echo_body) is True
        response = self.client.post('/echo', data='{nope',
                                    content_type='application/json')
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Bad Request'

    def test_body_parser_options(self):
        self.server.post('/echo', self.server.body_parser({'max_size': 4}), echo_body)
        response = self.client.post('/echo', data='too long', content_type='text/plain')
        assert response.status_code == 413

    def test_global_middleware(self):
        def stamp(request, response, next_handler):
            response.set_header('X-Served-By', 'middleware')
            next_handler()

        assert self.server.use(stamp) is True
        assert self.server.use('not a function') is False
        self.server.get('/hello/:name', hello)
        response = self.client.get('/hello/x')
        assert response.headers['X-Served-By'] == 'middleware'
        assert self.server.middleware == [stamp]

    def test_handler_exception(self):
        def broken(request, response, next_handler):
            raise ValueError('boom')

        self.server.get('/broken', broken)
        response = self.client.get('/broken')
        assert response.status_code == 500
        assert response.get_json() == {'error': 'Internal Server Error', 'message': 'boom'}
        assert len(self.log.errors) == 1

    def test_chain_without_response(self):
        self.server.get('/silent', noop_handler)
        response = self.client.get('/silent')
        assert response.status_code == 200
        assert response.get_data() == b''

    def test_route_decorator(self):
        @self.server.route('GET', '/decorated')
        def decorated(request, response, next_handler):
            response.send('decorated')

        assert self.client.get('/decorated').get_data(as_text=True) == 'decorated'

    def test_mapping_after_first_request(self):
        self.server.get('/first', noop_handler)
        self.client.get('/first')
        assert self.server.get('/late', noop_handler) is False
        assert len(self.log.errors) == 1


class TestFlaskStatic:

    def setup_method(self):
        self.log = RecordingLog()
        self.server = FlaskServiceServer(ServiceServerConfig(), log=self.log)
        self.client = self.server.app.test_client()

    def test_serve_static(self, tmp_path):
        (tmp_path / 'index.html').write_text('<h1>home</h1>')
        (tmp_path / 'app.js').write_text('let a = 1;')
        assert self.server.serve_static('/static/*', {'directory': str(tmp_path)}) is True
        assert self.client.get('/static/app.js').get_data(as_text=True) == 'let a = 1;'
        assert self.client.get('/static/').get_data(as_text=True) == '<h1>home</h1>'
        assert self.client.get('/static/missing.js').status_code == 404

    def test_serve_static_missing_directory(self, tmp_path):
        assert self.server.serve_static('/static/*',
                                        {'directory': str(tmp_path / 'nope')}) is False
        assert self.server.serve_static('/static/*', {}) is False
        assert len(self.log.errors) == 2


class TestFlaskInvoke:

    def setup_method(self):
        self.log = RecordingLog()
        self.server = FlaskServiceServer(ServiceServerConfig(), log=self.log)
        self.server.get('/hello/:name', hello)
        self.server.post_with_body_parser('/echo', echo_body)

    def test_invoke_get(self):
        callback = mock.Mock()
        assert self.server.invoke('GET', '/hello/you', {'k': '1'}, callback) is True
        callback.assert_called_once_with(None, {'hello': 'you', 'query': {'k': '1'}})

    def test_invoke_post(self):
        callback = mock.Mock()
        assert self.server.invoke('post', '/echo', {'k': 1}, callback) is True
        callback.assert_called_once_with(None, {'body': {'k': 1}})

    def test_invoke_without_callback(self):
        assert self.server.invoke('GET', '/hello/you') is True

    def test_invoke_unknown_route(self):
        callback = mock.Mock()
        assert self.server.invoke('GET', '/missing', None, callback) is True
        error, data = callback.call_args[0]
        assert isinstance(error, HandlerError)
        assert error.status_code == 404
        assert data is None

    def test_invoke_bad_arguments(self):
        callback = mock.Mock()
        assert self.server.invoke('GET', 42, None, callback) is False
        callback.assert_not_called()
        assert len(self.log.errors) == 1

    def test_no_new_routes_after_invoke(self):
        self.server.invoke('GET', '/hello/you')
        assert self.server.get('/late', noop_handler) is False
        assert self.server.head('/hello/:name', noop_handler) is True


class TestFlaskLifecycle:

    def setup_method(self):
        self.log = RecordingLog()
        self.server = FlaskServiceServer(ServiceServerConfig(), log=self.log)
        self.server.get('/ping', lambda request, response, next_handler: response.send('pong'))

    def teardown_method(self):
        self.server.stop()

    def test_start_and_stop(self):
        seen = []
        self.server.start(0, lambda: seen.append(self.server.active))
        assert seen == [True]
        with urllib.request.urlopen(self.server.url + '/ping', timeout=5) as response:
            assert response.read() == b'pong'

        self.server.stop(lambda: seen.append(self.server.active))
        assert seen == [True, False]

    def test_start_twice(self):
        self.server.start(0)
        with pytest.raises(RuntimeError):
            self.server.start(0)

    def test_bind_failure(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            blocker.bind(('127.0.0.1', 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]
            with pytest.raises(OSError):
                self.server.start(port)
            assert self.server.active is False
            assert len(self.log.errors) == 1
        finally:
            blocker.close()

    def test_restart_after_stop(self):
        self.server.start(0)
        self.server.stop()
        self.server.start(0)
        assert self.server.active is True
        with urllib.request.urlopen(self.server.url + '/ping', timeout=5) as response:
            assert response.read() == b'pong'

    def test_stop_when_not_started(self):
        assert self.server.stop(lambda: 'stopped') == 'stopped'
        assert self.server.active is False
