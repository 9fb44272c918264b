"""
CORS middleware.

Wraps a view so every response it produces carries permissive
cross-origin headers, and answers preflight requests on its own.
"""

import functools

from flask import jsonify, make_response, request
from werkzeug.exceptions import HTTPException

from graphql_gateway.logger import get_logger

logger = get_logger()

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type, Authorization',
}


def cors(view):
    """
    Wrap a Flask view with CORS handling.

    OPTIONS requests get an empty 200 without calling the view. Errors
    raised by the view are rendered here so they carry the headers too.
    """
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        if request.method == 'OPTIONS':
            response = make_response('', 200)
        else:
            try:
                response = make_response(view(*args, **kwargs))
            except HTTPException as e:
                response = e.get_response()
            except Exception as e:
                logger.error("request_error", path=request.path, error=str(e), exc_info=True)
                response = make_response(jsonify({'error': 'Internal server error'}), 500)

        for name, value in CORS_HEADERS.items():
            response.headers[name] = value
        return response

    return wrapper
