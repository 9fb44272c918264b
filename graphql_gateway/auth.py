"""
Sign-in endpoint.

Credential checking and token issuance are not built yet. The endpoint
answers 501 so callers and tests see the gap instead of a silent success.
"""

from flask import jsonify

from graphql_gateway.logger import get_logger

logger = get_logger()


def signin():
    """
    Sign in (not implemented).

    Intended: parse a Basic auth header, check the credentials and issue a
    signed token.
    """
    logger.warning("signin_not_implemented")
    return jsonify({'error': 'Sign-in is not implemented'}), 501
