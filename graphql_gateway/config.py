"""
Gateway configuration.

All settings come from environment variables and are read once at import.
Durations are in seconds.
"""

import os
from typing import Tuple

SERVICE_NAME = os.getenv('SERVICE_NAME', 'graphql-gateway')

# Bind address, host part optional (":8080" listens on every interface)
ADDR = os.getenv('ADDR', ':8080')

READ_TIMEOUT = float(os.getenv('READ_TIMEOUT', '10'))
WRITE_TIMEOUT = float(os.getenv('WRITE_TIMEOUT', '10'))
IDLE_TIMEOUT = float(os.getenv('IDLE_TIMEOUT', '30'))
READ_HEADER_TIMEOUT = float(os.getenv('READ_HEADER_TIMEOUT', '2'))
SHUTDOWN_GRACE_PERIOD = float(os.getenv('SHUTDOWN_GRACE_PERIOD', '30'))

GRAPHQL_ENDPOINT = os.getenv('GRAPHQL_ENDPOINT', 'https://DOMAIN/api/graphql-engine/v1/graphql')
STATIC_DIR = os.getenv('STATIC_DIR', 'static')


def parse_address(addr: str) -> Tuple[str, int]:
    """
    Split a "host:port" bind address.

    An empty host means all interfaces.

    Raises:
        ValueError: if the port is missing or not a number
    """
    host, sep, port = addr.rpartition(':')
    if not sep or not port.isdigit():
        raise ValueError(f"invalid bind address: {addr!r}")
    host = host.strip('[]')
    return host or '0.0.0.0', int(port)
