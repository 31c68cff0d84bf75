"""
Framework-neutral request handling shared by the service server adapters.

Route handlers and middleware all have the prototype

    handler(request, response, next_handler)

and receive a ServiceRequest and a ServiceResponse regardless of which HTTP
framework the adapter wraps. Each adapter builds the request from its
framework's request object, runs the handler chain with dispatch(), and
converts the resulting ServiceResponse back.
"""
import json
from http import HTTPStatus
from typing import Any, Callable, Dict, Iterable, Optional
from urllib.parse import parse_qs

JSON_CONTENT_TYPE = 'application/json'
TEXT_CONTENT_TYPE = 'text/plain; charset=utf-8'
BINARY_CONTENT_TYPE = 'application/octet-stream'


class HandlerError(Exception):
    """Error raised by (or passed to next_handler from) a route handler."""

    def __init__(self, status_code: int, message: str):
        Exception.__init__(self, message)
        self.status_code = status_code
        self.message = message


class ServiceRequest:
    """Request data handed to route handlers.

    Attributes:
        method: Upper case HTTP method
        path: Request path without the query string
        params: Path parameters captured by the route pattern
        query: Query parameters
        headers: Request headers with lower case names
        raw: Raw request body
        body: Parsed body, set by a body parser middleware
        client_ip: Address of the client, or 'unknown'
    """

    def __init__(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                 query: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None,
                 raw: bytes = b'', client_ip: str = 'unknown'):
        self.method = method.upper()
        self.path = path
        self.params = dict(params or {})
        self.query = dict(query or {})
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.raw = raw or b''
        self.body: Any = None
        self.client_ip = client_ip

    @property
    def content_type(self) -> str:
        return self.headers.get('content-type', '')


class ServiceResponse:
    """Response built up by route handlers."""

    def __init__(self):
        self.status_code = 200
        self.headers: Dict[str, str] = {}
        self.body = b''
        self.sent = False

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def send(self, data: Any = None, status_code: Optional[int] = None,
             content_type: Optional[str] = None) -> None:
        """Set the response body and mark the response as sent.

        bytes are sent as-is, str as text and anything else is JSON encoded.

        Raises:
            RuntimeError: If the response was already sent
        """
        if self.sent:
            raise RuntimeError('Response already sent')

        if status_code is not None:
            self.status_code = status_code

        if data is None:
            body, default_type = b'', None
        elif isinstance(data, (bytes, bytearray)):
            body, default_type = bytes(data), BINARY_CONTENT_TYPE
        elif isinstance(data, str):
            body, default_type = data.encode('utf-8'), TEXT_CONTENT_TYPE
        else:
            body, default_type = json.dumps(data).encode('utf-8'), JSON_CONTENT_TYPE

        content_type = content_type or default_type
        if content_type:
            self.headers['Content-Type'] = content_type
        self.body = body
        self.sent = True

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get('Content-Type')


def run_handlers(handlers: Iterable[Callable], request: ServiceRequest,
                 response: ServiceResponse) -> None:
    """Run handlers in order, each one deciding whether to continue.

    A handler continues the chain by calling next_handler(); calling
    next_handler(error) aborts it. The chain also stops once the response
    has been sent.

    Raises:
        Exception: Whatever a handler raised, or the error it passed on
    """
    chain = list(handlers)
    state = {'index': 0, 'error': None}

    def next_handler(error: Any = None) -> None:
        if error is not None:
            state['error'] = error
            return
        if response.sent or state['index'] >= len(chain):
            return
        handler = chain[state['index']]
        state['index'] += 1
        handler(request, response, next_handler)

    next_handler()

    error = state['error']
    if error is not None:
        if isinstance(error, Exception):
            raise error
        raise HandlerError(500, str(error))


def error_payload(error: Exception):
    """Return (status_code, body dict) describing a failed handler chain."""
    status_code = getattr(error, 'status_code', 500)
    try:
        phrase = HTTPStatus(status_code).phrase
    except ValueError:
        phrase = 'Error'
    return status_code, {
        'error': phrase,
        'message': str(error)
    }


def dispatch(handlers: Iterable[Callable], request: ServiceRequest,
             log: Any = None) -> ServiceResponse:
    """Run a handler chain and always come back with a response.

    Failures become a JSON error response carrying the error's status code
    (500 unless it is a HandlerError).
    """
    response = ServiceResponse()
    try:
        run_handlers(handlers, request, response)
    except Exception as e:
        if log is not None:
            log.error('ServiceServer handler chain for [{0} {1}] failed: {2}'.format(
                request.method, request.path, e))
        status_code, payload = error_payload(e)
        response = ServiceResponse()
        response.send(payload, status_code)
    return response


def parse_body(raw: bytes, content_type: str = '') -> Any:
    """Parse a raw request body according to its content type.

    Returns:
        {} for an empty body, decoded JSON, a dict for form data, text otherwise

    Raises:
        ValueError: If the body cannot be decoded
    """
    if not raw:
        return {}

    media_type = content_type.split(';')[0].strip().lower()
    text = raw.decode('utf-8')
    if media_type == JSON_CONTENT_TYPE or media_type.endswith('+json'):
        return json.loads(text)
    if media_type == 'application/x-www-form-urlencoded':
        params = parse_qs(text, keep_blank_values=True)
        return {k: v[0] if len(v) == 1 else v for k, v in params.items()}
    return text


def make_body_parser(options: Optional[Dict[str, Any]] = None) -> Callable:
    """Build a middleware that parses request.raw into request.body.

    Options:
        max_size: Largest accepted body in bytes; larger bodies fail with 413
    """
    max_size = (options or {}).get('max_size')

    def body_parser(request, response, next_handler):
        if max_size is not None and len(request.raw) > max_size:
            return next_handler(HandlerError(
                413, 'Request body of {0} bytes exceeds the limit of {1} bytes'.format(
                    len(request.raw), max_size)))
        try:
            request.body = parse_body(request.raw, request.content_type)
        except ValueError as e:
            return next_handler(HandlerError(400, 'Malformed request body: {0}'.format(e)))
        return next_handler()

    return body_parser


# wildcard segment and parameter syntax per framework
_ROUTE_STYLES = {
    'flask': ('<{0}>', '<path:wildcard>'),
    'fastapi': ('{{{0}}}', '{wildcard:path}'),
    'aiohttp': ('{{{0}}}', '{wildcard:.*}'),
}


def convert_route(route: str, style: str) -> str:
    """Convert a ':name' / trailing '*' route pattern to a framework's syntax.

    Example:
        convert_route('/users/:id/files/*', 'flask')
        -> '/users/<id>/files/<path:wildcard>'
    """
    param_format, wildcard = _ROUTE_STYLES[style]
    segments = route.split('/')
    converted = []
    for position, segment in enumerate(segments):
        if segment.startswith(':') and len(segment) > 1:
            converted.append(param_format.format(segment[1:]))
        elif segment == '*' and position == len(segments) - 1:
            converted.append(wildcard)
        else:
            converted.append(segment)
    return '/'.join(converted)


def static_prefix(route: str) -> str:
    """Strip a trailing wildcard and slash from a static route: '/static/*' -> '/static'"""
    prefix = route
    if prefix.endswith('*'):
        prefix = prefix[:-1]
    return prefix.rstrip('/')
