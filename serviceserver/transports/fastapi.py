"""
FastAPI service server.

This module provides a service server implementation using the FastAPI
framework, served by uvicorn.
"""
import asyncio
import os
import threading
import time
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
    from fastapi import FastAPI, Request
    from fastapi.responses import Response
    from fastapi.staticfiles import StaticFiles
    import uvicorn
except ImportError:
    raise ImportError(
        'FastAPI and uvicorn are required for FastAPIServiceServer. '
        'Install them with: pip install fastapi uvicorn'
    )

# seconds to wait for uvicorn to come up or shut down
STARTUP_TIMEOUT = 10
SHUTDOWN_TIMEOUT = 5


class FastAPIServiceServer(ServiceServerBase):
    """Service server implementation using FastAPI.

    Attributes:
        app: The FastAPI application instance
        middleware: Global middleware registered with use()
        _uvicorn_server: The uvicorn server instance while running
    """

    def __init__(self, config: Any, options: Optional[Dict[str, Any]] = None,
                 service_hash: Optional[str] = None, log: Any = None):
        super().__init__(config, options, service_hash, log)

        self.service_server_type = 'FastAPI'
        self.app = FastAPI()
        self.middleware: List[Callable] = []
        self.host = self.service_options.get('ServiceHost', '127.0.0.1')
        self._routes = set()
        self._uvicorn_server = None
        self._server_thread: Optional[threading.Thread] = None

    async def _build_request(self, request: Request) -> ServiceRequest:
        return ServiceRequest(
            method=request.method,
            path=request.url.path,
            params=dict(request.path_params),
            query=dict(request.query_params),
            headers=dict(request.headers),
            raw=await request.body(),
            client_ip=request.client.host if request.client else 'unknown',
        )

    def _add_route(self, verb: str, route: str, handlers) -> bool:
        key = (verb, route)
        if key in self._routes:
            self.log.error('FastAPI provider failed to map {0} route [{1}] -- route is '
                           'already mapped.'.format(verb, route))
            return False

        async def endpoint(request: Request) -> Response:
            service_request = await self._build_request(request)
            service_response = dispatch(self.middleware + list(handlers),
                                        service_request, self.log)
            return Response(content=service_response.body,
                            status_code=service_response.status_code,
                            headers=service_response.headers)

        self.app.add_api_route(
            convert_route(route, 'fastapi'),
            endpoint,
            methods=[verb],
            include_in_schema=False
        )
        self._routes.add(key)
        return True

    # Lifecycle

    def start(self, port: Any = None, callback: Optional[Callable] = None) -> Any:
        """Start serving the FastAPI application and wait until uvicorn is up.

        Raises:
            RuntimeError: If the server is already running
            OSError: If uvicorn does not come up (usually a bind failure)
        """
        if self.active:
            raise RuntimeError('Server is already running')

        if port is None:
            port = self.port if self.port is not None else 8080

        self._uvicorn_server = uvicorn.Server(
            uvicorn.Config(
                app=self.app,
                host=self.host,
                port=int(port),
                log_level='error'
            )
        )
        self._server_thread = threading.Thread(
            target=self._run_server,
            daemon=True
        )
        self._server_thread.start()

        deadline = time.monotonic() + STARTUP_TIMEOUT
        while not self._uvicorn_server.started:
            if not self._server_thread.is_alive() or time.monotonic() > deadline:
                self._uvicorn_server.should_exit = True
                self._uvicorn_server = None
                self._server_thread = None
                self.log.error('FastAPI provider failed to bind to {0}:{1}'.format(
                    self.host, port))
                raise OSError('Failed to bind to {0}:{1}'.format(self.host, port))
            time.sleep(0.01)

        self.url = 'http://{0}:{1}'.format(self.host, self._bound_port(port))
        return super().start(port, callback)

    def _bound_port(self, port: Any) -> int:
        """Port uvicorn actually listens on (differs from port when it is 0)."""
        for server in self._uvicorn_server.servers:
            for sock in server.sockets:
                return sock.getsockname()[1]
        return int(port)

    def _run_server(self) -> None:
        """Run the uvicorn server in the current thread."""
        try:
            asyncio.run(self._uvicorn_server.serve())
        except SystemExit:
            # uvicorn exits on startup failures; start() reports them
            pass

    def stop(self, callback: Optional[Callable] = None) -> Any:
        if self._uvicorn_server is not None:
            self._uvicorn_server.should_exit = True
            if self._server_thread:
                self._server_thread.join(timeout=SHUTDOWN_TIMEOUT)
        self._uvicorn_server = None
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
        """Mount options['directory'] under the route prefix."""
        options = options or {}
        directory = options.get('directory')
        if not directory or not os.path.isdir(directory):
            self.log.error('FastAPI provider failed to serve static route [{0}] -- '
                           'directory {1!r} does not exist.'.format(route, directory))
            return False

        self.app.mount(static_prefix(route),
                       StaticFiles(directory=directory, html=True),
                       name='static {0}'.format(route))
        return True
