"""Run a service server from the command line

    python -m serviceserver --server-type Flask --port 8080 --static ./public

The server answers GET /status with its product name, type, hash and state,
and optionally serves a static directory. It runs until interrupted.
"""
import signal
from sys import exit, stderr
from threading import Event

from dotenv import load_dotenv

from .config import ConfigError, LOG_PRINT, LOG_VERBOSE, ServiceServerConfig
from .manager import ServiceManager


def status_handler(service):
    def status(request, response, next_handler):
        response.send({
            'product': service.name,
            'type': service.service_server_type,
            'hash': service.hash,
            'active': service.active,
        })
    return status


def main(argv=None):
    # Load environment variables from .env file
    load_dotenv()

    config = ServiceServerConfig()
    try:
        config.parse(argv)
    except ConfigError as err:
        stderr.write('{0}\n'.format(err))
        return 1
    log = config.log

    manager = ServiceManager(config)
    manager.load_service_types()
    service = manager.instantiate_service_provider(
        config.server_type, config.service_options(), config.hash)
    if service is None:
        return 1

    service.get('/status', status_handler(service))
    if config.static is not None:
        if not service.serve_static(config.static_route,
                                    {'directory': config.static}):
            return 1

    stopped = Event()

    def interrupt(signum, frame):
        log(LOG_VERBOSE, 'Received signal', signum)
        stopped.set()

    signal.signal(signal.SIGINT, interrupt)
    signal.signal(signal.SIGTERM, interrupt)

    try:
        service.start(config.port, lambda: log(
            LOG_PRINT, '{0} listening on {1}'.format(config.product, service.url)))
    except (OSError, RuntimeError) as err:
        stderr.write('{0}\n'.format(err))
        return 1

    try:
        while not stopped.wait(1):
            pass
    finally:
        manager.stop_all()
        log(LOG_PRINT, config.product, 'stopped')
    return 0


if __name__ == '__main__':
    exit(main())
