"""
aiohttp service server.

This module provides a service server implementation using the aiohttp
framework. aiohttp is an asynchronous HTTP client/server framework; the
server runs on its own event loop in a separate thread so that start() and
stop() keep the synchronous service server contract.
"""
import asyncio
import os
import threading
from typing import Any, Callable, Dict, List, Optional

from serviceserver.base import ServiceServerBase
from serviceserver.routing import (
    ServiceRequest,
    convert_route,
    dispatch,
    make_body_parser,
    static_prefix,
)

try:
    from aiohttp import web
except ImportError:
    raise ImportError(
        'aiohttp is required for AiohttpServiceServer. '
        'Install it with: pip install aiohttp'
    )

STARTUP_TIMEOUT = 10
SHUTDOWN_TIMEOUT = 5


class AiohttpServiceServer(ServiceServerBase):
    """Service server implementation using aiohttp.

    Routes cannot be mapped while the server runs: aiohttp freezes the
    router of an application once it runs, and an application cannot run
    again after it has been cleaned up. Registrations are recorded so that
    a fresh application is built from them whenever the current one has
    already run.

    Attributes:
        app: The current aiohttp Application, rebuilt once it has run
        middleware: Global middleware registered with use()
        _runner: The AppRunner instance
        _site: The TCPSite instance
        _loop: The event loop for the server
    """

    def __init__(self, config: Any, options: Optional[Dict[str, Any]] = None,
                 service_hash: Optional[str] = None, log: Any = None):
        super().__init__(config, options, service_hash, log)

        self.service_server_type = 'Aiohttp'
        self.app = web.Application()
        self._registrations: List[Callable] = []
        self.middleware: List[Callable] = []
        self.host = self.service_options.get('ServiceHost', '127.0.0.1')
        self._runner = None
        self._site = None
        self._loop = None
        self._server_thread = None
        self._ready = threading.Event()
        self._startup_error = None

    async def _build_request(self, request: web.Request) -> ServiceRequest:
        peername = request.transport.get_extra_info('peername') if request.transport else None
        return ServiceRequest(
            method=request.method,
            path=request.path,
            params=dict(request.match_info),
            query=dict(request.query),
            headers=dict(request.headers),
            raw=await request.read(),
            client_ip=peername[0] if peername else 'unknown',
        )

    def _add_route(self, verb: str, route: str, handlers) -> bool:
        async def wrapper(request: web.Request) -> web.Response:
            service_request = await self._build_request(request)
            service_response = dispatch(self.middleware + list(handlers),
                                        service_request, self.log)
            return web.Response(body=service_response.body,
                                status=service_response.status_code,
                                headers=service_response.headers)

        path = convert_route(route, 'aiohttp')

        def register(app):
            app.router.add_route(verb, path, wrapper)

        try:
            self._register(register)
        except (RuntimeError, ValueError) as e:
            self.log.error('aiohttp provider failed to map {0} route [{1}]: {2}'.format(
                verb, route, e))
            return False
        return True

    def _register(self, register: Callable) -> None:
        """Apply a registration to the current application and keep it for rebuilds."""
        register(self.app)
        self._registrations.append(register)

    def _build_app(self) -> web.Application:
        app = web.Application()
        for register in self._registrations:
            register(app)
        return app

    # Lifecycle

    def start(self, port: Any = None, callback: Optional[Callable] = None) -> Any:
        """Start serving on a private event loop and wait until bound.

        Raises:
            RuntimeError: If the server is already running
            OSError: If the server cannot bind to the address
        """
        if self.active:
            raise RuntimeError('Server is already running')

        if port is None:
            port = self.port if self.port is not None else 8080

        if self.app.frozen:
            self.app = self._build_app()

        # Create new event loop for the server thread
        self._loop = asyncio.new_event_loop()
        self._ready.clear()
        self._startup_error = None

        self._server_thread = threading.Thread(
            target=self._run_server,
            args=(self.host, int(port)),
            daemon=True
        )
        self._server_thread.start()

        if not self._ready.wait(STARTUP_TIMEOUT):
            self._startup_error = TimeoutError('server did not start in time')
        if self._startup_error is not None:
            error = self._startup_error
            self._server_thread.join(timeout=SHUTDOWN_TIMEOUT)
            self._server_thread = None
            self._loop = None
            self.log.error('aiohttp provider failed to bind to {0}:{1}: {2}'.format(
                self.host, port, error))
            raise OSError('Failed to bind to {0}:{1}: {2}'.format(self.host, port, error))

        self.url = 'http://{0}:{1}'.format(self.host, self._bound_port(port))
        return super().start(port, callback)

    def _bound_port(self, port: Any) -> int:
        """Port the site actually listens on (differs from port when it is 0)."""
        for address in self._runner.addresses:
            return address[1]
        return int(port)

    def _run_server(self, host: str, port: int) -> None:
        """Run the aiohttp server in the current thread.

        Args:
            host: The hostname or IP address to bind to
            port: The port number to listen on
        """
        loop = self._loop
        asyncio.set_event_loop(loop)
        try:
            self._runner = web.AppRunner(self.app)
            loop.run_until_complete(self._runner.setup())
            self._site = web.TCPSite(self._runner, host, port)
            loop.run_until_complete(self._site.start())
        except Exception as e:
            self._startup_error = e
            if self._runner is not None:
                loop.run_until_complete(self._runner.cleanup())
            self._runner = None
            self._site = None
            loop.close()
            self._ready.set()
            return

        self._ready.set()
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(self._runner.cleanup())
            loop.close()
            self._runner = None
            self._site = None

    def stop(self, callback: Optional[Callable] = None) -> Any:
        if self._loop is not None and self._server_thread is not None:
            # Schedule the stop on the server's event loop
            if not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._loop.stop)
            self._server_thread.join(timeout=SHUTDOWN_TIMEOUT)
            self.app = self._build_app()
        self._loop = None
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
        return self._add_route('HEAD', route, handlers)

    def serve_static(self, route: str, options: Optional[Dict[str, Any]] = None) -> bool:
        """Serve options['directory'] under the route prefix."""
        options = options or {}
        directory = options.get('directory')
        if not directory or not os.path.isdir(directory):
            self.log.error('aiohttp provider failed to serve static route [{0}] -- '
                           'directory {1!r} does not exist.'.format(route, directory))
            return False

        prefix = static_prefix(route) or '/'

        def register(app):
            app.router.add_static(prefix, directory)

        try:
            self._register(register)
        except (RuntimeError, ValueError) as e:
            self.log.error('aiohttp provider failed to serve static route [{0}]: {1}'.format(
                route, e))
            return False
        return True
