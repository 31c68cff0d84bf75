"""
serviceserver

A uniform surface over HTTP server frameworks: lifecycle control, global
middleware and per-verb route mapping, so that the framework behind a
service can be swapped without changing the code that maps its routes.
"""

from .base import ServiceServerBase
from .config import ConfigError, Logger, ServiceServerConfig
from .manager import ServiceManager

__all__ = ['ServiceServerBase', 'ServiceServerConfig', 'ServiceManager',
           'Logger', 'ConfigError']
