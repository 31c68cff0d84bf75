"""
Flask service server.

This module provides a service server implementation using the Flask
framework, served by werkzeug's threaded WSGI server.
"""
import os
import threading
from typing import Any, Callable, Dict, List, Optional

from serviceserver.base import ServiceServerBase
from serviceserver.routing import (
    HandlerError,
    ServiceRequest,
    convert_route,
    dispatch,
    make_body_parser,
    static_prefix,
)

try:
    from flask import Flask, Response, request, send_from_directory
    from werkzeug.serving import make_server
except ImportError:
    raise ImportError(
        'Flask is required for FlaskServiceServer. '
        'Install it with: pip install flask'
    )

# methods whose invoke() data goes in the query string rather than the body
QUERY_METHODS = ('GET', 'HEAD', 'DELETE')


class FlaskServiceServer(ServiceServerBase):
    """Service server implementation using Flask.

    Routes are added to a Flask application as they are mapped; start()
    serves it from a werkzeug server running in a daemon thread, and
    invoke() dispatches through Flask's test client without the network.

    Attributes:
        app: The Flask application instance
        middleware: Global middleware registered with use()
    """

    def __init__(self, config: Any, options: Optional[Dict[str, Any]] = None,
                 service_hash: Optional[str] = None, log: Any = None):
        super().__init__(config, options, service_hash, log)

        self.service_server_type = 'Flask'
        self.app = Flask(__name__, static_folder=None)
        self.middleware: List[Callable] = []
        # route -> HEAD handlers; werkzeug also routes HEAD to GET rules
        self._head_handlers: Dict[str, tuple] = {}
        self.host = self.service_options.get('ServiceHost', '127.0.0.1')
        self._server = None
        self._server_thread: Optional[threading.Thread] = None

    def _build_request(self, params: Dict[str, Any]) -> ServiceRequest:
        return ServiceRequest(
            method=request.method,
            path=request.path,
            params=params,
            query=request.args.to_dict(),
            headers=dict(request.headers),
            raw=request.get_data(),
            client_ip=request.remote_addr or 'unknown',
        )

    def _make_view(self, route: str, handlers) -> Callable:
        def view(**params):
            chain = handlers
            if request.method == 'HEAD':
                chain = self._head_handlers.get(route, handlers)
            service_response = dispatch(self.middleware + list(chain),
                                        self._build_request(params), self.log)
            return Response(service_response.body,
                            status=service_response.status_code,
                            headers=service_response.headers)
        return view

    def _add_route(self, verb: str, route: str, handlers) -> bool:
        endpoint = '{0} {1}'.format(verb, route)
        if endpoint in self.app.view_functions:
            self.log.error('Flask provider failed to map {0} route [{1}] -- route is '
                           'already mapped.'.format(verb, route))
            return False
        try:
            self.app.add_url_rule(convert_route(route, 'flask'), endpoint=endpoint,
                                  view_func=self._make_view(route, handlers), methods=[verb])
        except (AssertionError, ValueError) as e:
            self.log.error('Flask provider failed to map {0} route [{1}]: {2}'.format(
                verb, route, e))
            return False
        return True

    # Lifecycle

    def start(self, port: Any = None, callback: Optional[Callable] = None) -> Any:
        """Start serving the Flask application.

        Raises:
            RuntimeError: If the server is already running
            OSError: If the server cannot bind to the address
        """
        if self.active:
            raise RuntimeError('Server is already running')

        if port is None:
            port = self.port if self.port is not None else 8080
        try:
            self._server = make_server(self.host, int(port), self.app, threaded=True)
        # werkzeug exits instead of raising when the address is in use
        except (OSError, SystemExit) as e:
            self._server = None
            self.log.error('Flask provider failed to bind to {0}:{1}: {2}'.format(
                self.host, port, e))
            raise OSError('Failed to bind to {0}:{1}: {2}'.format(self.host, port, e))

        self._server_thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True
        )
        self._server_thread.start()
        self.url = 'http://{0}:{1}'.format(self.host, self._server.server_port)
        return super().start(port, callback)

    def stop(self, callback: Optional[Callable] = None) -> Any:
        if self._server is not None:
            self._server.shutdown()
            if self._server_thread:
                self._server_thread.join(timeout=5)
            self._server.server_close()
        self._server = None
        self._server_thread = None
        return super().stop(callback)

    # Content parsing and middleware

    def body_parser(self, options: Optional[Dict[str, Any]] = None) -> Callable:
        return make_body_parser(options)

    def use(self, handler: Any) -> bool:
        if not super().use(handler):
            return False
        self.middleware.append(handler)
        return True

    # Routes

    def head(self, route: Any, *handlers: Callable) -> bool:
        if not super().head(route, *handlers):
            return False
        return self.do_head(route, *handlers)

    def do_get(self, route: str, *handlers: Callable) -> bool:
        return self._add_route('GET', route, handlers)

    def do_put(self, route: str, *handlers: Callable) -> bool:
        return self._add_route('PUT', route, handlers)

    def do_post(self, route: str, *handlers: Callable) -> bool:
        return self._add_route('POST', route, handlers)

    def do_delete(self, route: str, *handlers: Callable) -> bool:
        return self._add_route('DELETE', route, handlers)

    def do_patch(self, route: str, *handlers: Callable) -> bool:
        return self._add_route('PATCH', route, handlers)

    def do_options(self, route: str, *handlers: Callable) -> bool:
        return self._add_route('OPTIONS', route, handlers)

    def do_head(self, route: str, *handlers: Callable) -> bool:
        """Map HEAD handlers for a route.

        A GET rule already answers HEAD for its path, so when one exists the
        handlers are only recorded and the GET view dispatches to them.
        """
        if route in self._head_handlers:
            self.log.error('Flask provider failed to map HEAD route [{0}] -- route is '
                           'already mapped.'.format(route))
            return False
        if 'GET {0}'.format(route) not in self.app.view_functions:
            if not self._add_route('HEAD', route, handlers):
                return False
        self._head_handlers[route] = handlers
        return True

    def serve_static(self, route: str, options: Optional[Dict[str, Any]] = None) -> bool:
        """Serve options['directory'] under the route prefix.

        Options:
            directory: Directory to serve
            default: File served for the bare prefix (default: index.html)
        """
        options = options or {}
        directory = options.get('directory')
        if not directory or not os.path.isdir(directory):
            self.log.error('Flask provider failed to serve static route [{0}] -- '
                           'directory {1!r} does not exist.'.format(route, directory))
            return False

        directory = os.path.abspath(directory)
        default = options.get('default', 'index.html')
        prefix = static_prefix(route)

        def static_file(filename=default):
            return send_from_directory(directory, filename)

        endpoint = 'static {0}'.format(route)
        try:
            self.app.add_url_rule(prefix + '/', endpoint=endpoint + ' index',
                                  view_func=static_file, methods=['GET'])
            self.app.add_url_rule(prefix + '/<path:filename>', endpoint=endpoint,
                                  view_func=static_file, methods=['GET'])
        except (AssertionError, ValueError) as e:
            self.log.error('Flask provider failed to serve static route [{0}]: {1}'.format(
                route, e))
            return False
        return True

    def invoke(self, method: str, route: str, data: Any = None,
               callback: Optional[Callable] = None) -> bool:
        """Dispatch a request through the mapped routes without the network.

        The callback receives (error, data): (None, decoded body) for a
        successful response, (HandlerError, None) for a 4xx/5xx status.

        The request counts as the application's first request, after which
        Flask refuses new routes: map every route before invoking one.
        HEAD handlers added to a path that already has a GET route are the
        exception, since they need no new rule.

        Returns:
            True if the request was dispatched, False otherwise
        """
        if not isinstance(method, str) or not isinstance(route, str):
            self.log.error('Flask provider invoke failed -- method and route must be '
                           'strings, got {0} and {1}.'.format(type(method).__name__,
                                                              type(route).__name__))
            return False

        verb = method.upper()
        kwargs: Dict[str, Any] = {}
        if data is not None:
            if verb in QUERY_METHODS and isinstance(data, dict):
                kwargs['query_string'] = data
            else:
                kwargs['json'] = data

        try:
            client = self.app.test_client()
            result = client.open(route, method=verb, **kwargs)
        except Exception as e:
            self.log.error('Flask provider invoke of [{0} {1}] failed: {2}'.format(
                verb, route, e))
            if callback is not None:
                callback(e, None)
            return False

        if result.is_json:
            body = result.get_json(silent=True)
        else:
            body = result.get_data(as_text=True)

        if callback is not None:
            if result.status_code >= 400:
                message = body.get('message') if isinstance(body, dict) else body
                callback(HandlerError(result.status_code, message or result.status), None)
            else:
                callback(None, body)
        return True
