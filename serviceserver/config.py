'''Configuration and logging for service servers

This module provides the ServiceServerConfig class, the Logger it owns, and
the ConfigError exception. The latter is raised when the former fails to
initialise for some reason. After its parse() method is called the config
provides the following instance variables:

VERSION:
        a string giving the name and version of the package
product:
        the product name reported by every service server built from this
        config
host, port:
        the address and port a service server binds to when started from the
        command line
server_type:
        the registered service type (entry point name) to run, e.g. Flask
hash:
        optional identifying hash handed to the service registry
static, static_route:
        a directory to serve and the route it is mounted under

and the logger:

logger.log(level, arg[, arg...], sep = ' '):
        level may be one of LOG_ERROR, LOG_PRINT, LOG_VERBOSE, or LOG_DEBUG:
        if the chosen verbosity level is less, the message will not be
        printed. All the subsequent arguments will be str()'d and printed,
        preceded by a timestamp and joined by the string given in the keyword
        argument `sep' (default ' ')
logger.error(message), logger.debug(message, context):
        shorthands used by the service servers themselves
'''

from errno import EIO
from optparse import OptionParser, Values
from os import getenv
from sys import argv as sys_argv, exit, stdout
from time import strftime
from typing import Any, Optional

( # Log levels
    LOG_ALWAYS,
    LOG_ERROR,
    LOG_PRINT,
    LOG_VERBOSE,
    LOG_DEBUG,
    LOG_LEVELS
) = list(range(6))
# and their names
loglevels = ['ALWAYS', 'ERROR', 'PRINT', 'VERBOSE', 'DEBUG']


def concat(*args, **kwargs):
    '''Join str()'d arguments with the keyword argument sep (default ' ')'''
    try:
        sep = kwargs['sep']
        del kwargs['sep']
    except KeyError:
        sep = ' '

    if kwargs:
        raise TypeError('unexpected keyword arguments: ' +
                        str(list(kwargs.keys())))

    return sep.join(map(str, args))


class ConcatError(Exception):
    def __init__(self, *args, **kwargs):
        Exception.__init__(self, concat(*args, **kwargs))


class ConfigError(ConcatError):
    pass


class Logger(object):
    '''Leveled logger writing timestamped lines to a stream.

    Service servers only rely on error(message) and debug(message, context);
    the rest is for the command line and the registry.
    '''

    def __init__(self, verbosity: int = LOG_PRINT, stream: Any = None):
        self.verbosity = verbosity
        self.stream = stream

    @staticmethod
    def logprefix(level):
        time = strftime('%H:%M:%S')
        levelname = loglevels[level]
        return '[{time}] {levelname[0]} '.format(**locals())

    def log(self, level, *args, **kwargs):
        '''log(level, arg[, arg]*[, sep = ' '])

        If the verbosity is below level, nothing happens, otherwise a
        timestamp and then each str(arg) joined by the optional keyword
        argument sep (default space) is printed.

        IOError with errno EIO is ignored
        '''

        if not args:
            raise TypeError('Logger.log() requires at least one argument')
        if level > self.verbosity:
            return

        argstr = concat(*args, **kwargs)
        stream = self.stream if self.stream is not None else stdout

        try:
            stream.write(self.logprefix(level) + argstr + '\n')
            stream.flush()
        except IOError as err:
            if err.errno == EIO:
                pass
            else:
                raise

    def _with_context(self, level, message, context):
        if context is None:
            self.log(level, message)
        else:
            self.log(level, message, repr(context), sep = ' -- ')

    def error(self, message, context = None):
        self._with_context(LOG_ERROR, message, context)

    def print(self, message, context = None):
        self._with_context(LOG_PRINT, message, context)

    def verbose(self, message, context = None):
        self._with_context(LOG_VERBOSE, message, context)

    def debug(self, message, context = None):
        self._with_context(LOG_DEBUG, message, context)


class ServiceServerConfig(object):
    '''Settings context handed to every service server and the registry.

    Construct it directly for programmatic use (the product name and logger
    are all a service server needs), or call parse() to fill the remaining
    settings from the command line and the environment.
    '''

    def constants(self):
        '''Sets instance variables that do not change at run-time'''
        self.VERSION = 'serviceserver v1.0.0'

        self.DEFAULT_HOST = '127.0.0.1'
        self.DEFAULT_PORT = 8080
        self.DEFAULT_PRODUCT = 'ServiceServer'
        # entry point name in the serviceserver.types namespace
        self.DEFAULT_SERVER_TYPE = 'Flask'
        self.DEFAULT_STATIC_ROUTE = '/static/*'

    def __init__(self, vlevel = LOG_PRINT, product: Optional[str] = None,
                 stream: Any = None):
        self.constants()
        # Set this early so that self.log can be used immediately
        self.options = Values()
        self.options.verbose = vlevel
        self.logger = Logger(vlevel, stream)
        self.product = product if product is not None else self.DEFAULT_PRODUCT
        self.host = self.DEFAULT_HOST
        self.port = None
        self.server_type = self.DEFAULT_SERVER_TYPE
        self.hash = None
        self.static = None
        self.static_route = self.DEFAULT_STATIC_ROUTE

    def parse(self, argv = None):
        self.cmdline(argv)

    def __getattr__(self, attr):
        '''When the command line options have been parsed, this allows direct
        access to them'''
        # They aren't set as attributes of self directly because of the way
        # optparse.OptionParser works.
        return getattr(object.__getattribute__(self, 'options'), attr)

    def log(self, level, *args, **kwargs):
        self.logger.log(level, *args, **kwargs)

    def cmdline(self, argv = None):
        '''Parse options from the command line. For an explanation of the
        options and their usage, use:

        python -m serviceserver --help
        '''
        if argv is None:
            argv = sys_argv
        # we add our own help option so it can be handled like --version
        parser = OptionParser(add_help_option = False)
        parser.add_option('-h', '--help', action = 'store_true',
                          help = 'Display this help and exit')
        # options other than --help are in loose alphabetical order
        parser.add_option('--hash', help = 'Identifying hash for the service '
                          'registry (default: random)', metavar = 'HASH',
                          default = getenv('SERVICE_HASH'))
        parser.add_option('-H', '--host', help = 'Address to listen on',
                          metavar = 'ADDR', default = getenv('SERVICE_HOST'))
        parser.add_option('-p', '--port', type = 'int',
                          help = 'Port to listen on (default: {0})'.format(
                              self.DEFAULT_PORT),
                          metavar = 'NUM',
                          default = int(getenv('SERVICE_PORT'))
                          if getenv('SERVICE_PORT') else None)
        parser.add_option('--product', help = 'Product name reported by '
                          'the service', metavar = 'NAME',
                          default = getenv('SERVICE_PRODUCT'))
        parser.add_option('-q', action = 'count', default = 0,
                          help = 'Decrease verbose level. Multiple -q options '
                                 'may suppress logging entirely.')
        parser.add_option('-s', '--static', help = 'Directory to serve '
                          'static files from', metavar = 'DIR',
                          default = getenv('SERVICE_STATIC'))
        parser.add_option('--static-route', help = 'Route to mount the '
                          'static directory under (default: {0})'.format(
                              self.DEFAULT_STATIC_ROUTE),
                          metavar = 'ROUTE')
        parser.add_option('-t', '--server-type', help = 'Service server '
                          'type to run (default: {0})'.format(
                              self.DEFAULT_SERVER_TYPE),
                          metavar = 'TYPE',
                          default = getenv('SERVICE_SERVER_TYPE'))
        parser.add_option('-v', action = 'count', default = 0,
                          help = 'Increase verbose level. Multiple -v options '
                                 'increase the level further.')
        parser.add_option('--verbose', type = 'int', default = LOG_PRINT,
                          help = 'Set verbose level directly. Takes a single '
                                 'integer argument between {0} and {1}'.format(
                                 LOG_ALWAYS, LOG_LEVELS - 1),
                          metavar = 'LEVEL')
        parser.add_option('-V', '--version', action = 'store_true',
                          help = 'Show version information')
        self.options, args = parser.parse_args(argv[1:])
        if args:
            raise ConfigError('Unexpected command line arguments:', *args)

        if self.options.help:
            stdout.write(parser.format_help())
            exit(0)
        parser.destroy()
        del parser

        if self.options.version:
            stdout.write('{0}\n'.format(self.VERSION))
            exit(0)

        self.options.verbose += self.options.v - self.options.q

        if not LOG_ALWAYS <= self.options.verbose < LOG_LEVELS:
            raise ConfigError('Verbose level must be between', LOG_ALWAYS,
                              'and', LOG_LEVELS - 1,
                              '(not {0})'.format(self.options.verbose))
        self.logger.verbosity = self.options.verbose

        self.log(LOG_VERBOSE, 'Logging:', *loglevels[:self.options.verbose + 1])

        if self.options.port is not None and \
           not 0 <= self.options.port <= 0xffff:
            raise ConfigError('Port must be between 0 and 65535',
                              '(not {0})'.format(self.options.port))

        if self.options.product:
            self.product = self.options.product
        if self.options.host:
            self.host = self.options.host
        if self.options.port is not None:
            self.port = self.options.port
        else:
            self.port = self.DEFAULT_PORT
        if self.options.server_type:
            self.server_type = self.options.server_type
        if self.options.hash:
            self.hash = self.options.hash
        if self.options.static:
            self.static = self.options.static
        if self.options.static_route:
            self.static_route = self.options.static_route

    def service_options(self):
        '''Options dict handed to a service server built from this config'''
        return {'ServicePort': self.port, 'ServiceHost': self.host}
