#!/usr/bin/env python3
"""
GraphQL Gateway Service

Entry point that:
- Builds the server with the configured address and timeouts
- Registers the GraphQL proxy, sign-in and health routes
- Serves until SIGINT/SIGTERM, then drains gracefully
"""

import sys

from flask import jsonify

from graphql_gateway import config
from graphql_gateway.auth import signin
from graphql_gateway.logger import get_logger
from graphql_gateway.proxy import graphql_proxy
from graphql_gateway.server import Server

logger = get_logger()


def health():
    """Health check."""
    return jsonify({'status': 'healthy', 'service': config.SERVICE_NAME}), 200


def create_server(**overrides) -> Server:
    """Server with the default routes, configured from the environment."""
    settings = {
        'addr': config.ADDR,
        'read_timeout': config.READ_TIMEOUT,
        'write_timeout': config.WRITE_TIMEOUT,
        'idle_timeout': config.IDLE_TIMEOUT,
        'read_header_timeout': config.READ_HEADER_TIMEOUT,
        'shutdown_grace_period': config.SHUTDOWN_GRACE_PERIOD,
        'static_dir': config.STATIC_DIR,
    }
    settings.update(overrides)

    server = Server(**settings)
    server.handle('/api/graphql', graphql_proxy)
    server.handle('/api/auth/signin', signin)
    server.handle('/health', health)
    return server


def main() -> int:
    server = create_server()
    try:
        server.start()
    except Exception as e:
        logger.error("server_start_error", addr=config.ADDR, error=str(e))
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
