"""
Base class for service servers.

A service server wraps one HTTP framework (Flask, FastAPI, aiohttp...) behind
a uniform surface: lifecycle control, global middleware, and per-verb route
mapping. Callers program against ServiceServerBase and the concrete adapter
can be swapped without touching them.

The base validates its inputs and otherwise does nothing, so it can be
instantiated and exercised on its own. Adapters override the do_<verb> hooks
and the lifecycle methods, usually calling the base method first to reuse
its validation:

    def get(self, route, *handlers):
        if not super().get(route, *handlers):
            self.log.error('Flask provider failed to map route [{0}]!'.format(route))
            return False
        ...
"""
import inspect
import uuid
from typing import Any, Callable, Dict, Optional

# verb name -> method name
VERBS = {
    'GET': 'get',
    'PUT': 'put',
    'POST': 'post',
    'DELETE': 'delete',
    'PATCH': 'patch',
    'OPTIONS': 'options',
    'HEAD': 'head',
}


def accepts_middleware_arguments(handler: Any) -> bool:
    """Check that handler can be called as handler(request, response, next).

    Callables whose signature cannot be introspected (some builtins and
    C extensions) are given the benefit of the doubt.
    """
    if not callable(handler):
        return False
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        return True
    try:
        signature.bind(None, None, None)
    except TypeError:
        return False
    return True


class ServiceServerBase:
    """Base class for HTTP service server adapters.

    Attributes:
        name: Product name taken from the settings context
        url: Address descriptor of the server
        port: Port from the ServicePort option, or None
        service_type: Registry type name
        service_server_type: Kind tag of the concrete adapter
        active: Whether the server currently considers itself listening
        hash: Identifying hash used by the service registry
        service_options: The options dict the server was built with
        log: Logger exposing error(message) and debug(message, context)
    """

    def __init__(self, config: Any, options: Optional[Dict[str, Any]] = None,
                 service_hash: Optional[str] = None, log: Any = None):
        """Initialize the service server.

        Args:
            config: Settings context exposing `product` and `logger`
            options: Service options; recognizes ServicePort
            service_hash: Identifying hash for the service registry
            log: Logger to use instead of config.logger
        """
        self.config = config
        self.service_options: Dict[str, Any] = dict(options) if options else {}
        self.log = log if log is not None else config.logger

        self.service_type = 'ServiceServer'
        self.service_server_type = 'Base'

        self.name = getattr(config, 'product', None)
        self.url = 'BASE_SERVICE_SERVER'
        self.port = self.service_options.get('ServicePort')
        self.hash = service_hash if service_hash is not None else str(uuid.uuid4())

        self.active = False

    # Lifecycle

    def start(self, port: Any = None, callback: Optional[Callable] = None) -> Any:
        """Listen on the given port (or start a virtual server for it).

        The base only flips the active flag; the callback runs synchronously
        once the server is active.

        Returns:
            Whatever the callback returns
        """
        self.active = True

        if callback is not None:
            return callback()
        return None

    def stop(self, callback: Optional[Callable] = None) -> Any:
        """Stop the server and run the callback synchronously.

        Returns:
            Whatever the callback returns
        """
        self.active = False

        if callback is not None:
            return callback()
        return None

    # Content parsing

    def body_parser(self, options: Optional[Dict[str, Any]] = None) -> Callable:
        """Return a body parsing middleware.

        The base middleware only continues the chain; options are for
        adapters that actually parse.
        """
        def middleware(request, response, next_handler):
            next_handler()
        return middleware

    # Route creation

    def use(self, handler: Any) -> bool:
        """Register a global middleware with prototype (request, response, next).

        Returns:
            True if the handler has the expected shape, False otherwise
        """
        if not accepts_middleware_arguments(handler):
            self.log.error('ServiceServer USE global handler mapping failed -- '
                           'parameter was expected to be a function with prototype '
                           'function(request, response, next) but type was {0}.'.format(
                               type(handler).__name__))
            return False

        return True

    def _valid_route(self, verb: str, route: Any) -> bool:
        if not isinstance(route, str):
            self.log.error('ServiceServer {0} route mapping failed -- route parameter '
                           'was {1} instead of a string.'.format(verb, type(route).__name__))
            return False
        return True

    def map_route(self, verb: Any, route: Any, *handlers: Callable) -> bool:
        """Map a route for a verb given by name (case insensitive).

        Returns:
            The result of the matching verb method, or False for an unknown verb
        """
        method_name = VERBS.get(verb.upper()) if isinstance(verb, str) else None
        if method_name is None:
            self.log.error('ServiceServer route mapping failed -- unsupported verb '
                           '{0!r} for route [{1}].'.format(verb, route))
            return False
        return getattr(self, method_name)(route, *handlers)

    def route(self, verb: str, path: str, *middleware: Callable) -> Callable:
        """Decorator for route registration.

        The decorated function becomes the last handler of the route and is
        returned unchanged.

        Example:
            @server.route('GET', '/servers')
            def list_servers(request, response, next_handler):
                response.send({'servers': []})
        """
        def decorator(handler: Callable) -> Callable:
            self.map_route(verb, path, *middleware, handler)
            return handler
        return decorator

    def do_get(self, route: str, *handlers: Callable) -> bool:
        return True

    def get(self, route: Any, *handlers: Callable) -> bool:
        """Map a GET route.

        Returns:
            False if the route is not a string, otherwise the result of do_get
        """
        if not self._valid_route('GET', route):
            return False
        return self.do_get(route, *handlers)

    def get_with_body_parser(self, route: Any, *handlers: Callable) -> bool:
        return self.get(route, self.body_parser(), *handlers)

    def do_put(self, route: str, *handlers: Callable) -> bool:
        return True

    def put(self, route: Any, *handlers: Callable) -> bool:
        """Map a PUT route.

        Returns:
            False if the route is not a string, otherwise the result of do_put
        """
        if not self._valid_route('PUT', route):
            return False
        return self.do_put(route, *handlers)

    def put_with_body_parser(self, route: Any, *handlers: Callable) -> bool:
        return self.put(route, self.body_parser(), *handlers)

    def do_post(self, route: str, *handlers: Callable) -> bool:
        return True

    def post(self, route: Any, *handlers: Callable) -> bool:
        """Map a POST route.

        Returns:
            False if the route is not a string, otherwise the result of do_post
        """
        if not self._valid_route('POST', route):
            return False
        return self.do_post(route, *handlers)

    def post_with_body_parser(self, route: Any, *handlers: Callable) -> bool:
        return self.post(route, self.body_parser(), *handlers)

    def do_delete(self, route: str, *handlers: Callable) -> bool:
        return True

    def delete(self, route: Any, *handlers: Callable) -> bool:
        """Map a DELETE route.

        Returns:
            False if the route is not a string, otherwise the result of do_delete
        """
        if not self._valid_route('DELETE', route):
            return False
        return self.do_delete(route, *handlers)

    def delete_with_body_parser(self, route: Any, *handlers: Callable) -> bool:
        return self.delete(route, self.body_parser(), *handlers)

    def do_patch(self, route: str, *handlers: Callable) -> bool:
        return True

    def patch(self, route: Any, *handlers: Callable) -> bool:
        """Map a PATCH route.

        Returns:
            False if the route is not a string, otherwise the result of do_patch
        """
        if not self._valid_route('PATCH', route):
            return False
        return self.do_patch(route, *handlers)

    def patch_with_body_parser(self, route: Any, *handlers: Callable) -> bool:
        return self.patch(route, self.body_parser(), *handlers)

    def do_options(self, route: str, *handlers: Callable) -> bool:
        return True

    def options(self, route: Any, *handlers: Callable) -> bool:
        """Map an OPTIONS route.

        Returns:
            False if the route is not a string, otherwise the result of do_options
        """
        if not self._valid_route('OPTIONS', route):
            return False
        return self.do_options(route, *handlers)

    def options_with_body_parser(self, route: Any, *handlers: Callable) -> bool:
        return self.options(route, self.body_parser(), *handlers)

    def do_head(self, route: str, *handlers: Callable) -> bool:
        return True

    def head(self, route: Any, *handlers: Callable) -> bool:
        """Validate a HEAD route.

        Unlike the other verbs this does not call do_head; adapters that
        support HEAD override this method to delegate.

        Returns:
            False if the route is not a string, True otherwise
        """
        if not self._valid_route('HEAD', route):
            return False

        return True

    def head_with_body_parser(self, route: Any, *handlers: Callable) -> bool:
        return self.head(route, self.body_parser(), *handlers)

    # Static files and programmatic invocation

    def serve_static(self, route: str, options: Optional[Dict[str, Any]] = None) -> bool:
        """Serve a directory of static files under a route."""
        self.log.debug('ServiceServer serve_static called for route [{0}] and landed on '
                       'the base class; the service server type {1} does not implement '
                       'static file serving.'.format(route, self.service_server_type),
                       options)
        return False

    def invoke(self, method: str, route: str, data: Any = None,
               callback: Optional[Callable] = None) -> bool:
        """Invoke a registered route programmatically, without the network.

        Returns:
            True if the request was dispatched, False otherwise
        """
        self.log.debug('ServiceServer invoke called for route [{0}] and landed on the '
                       'base class; the service server type {1} likely does not implement '
                       'programmatic invoke capabilities.'.format(route, self.service_server_type),
                       data)
        return False
