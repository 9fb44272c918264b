"""
GraphQL reverse proxy.

Forwards authenticated requests to the upstream GraphQL engine and streams
the answer back as-is. Only the presence of a bearer credential is checked;
the token is passed through for the upstream to verify.
"""

from typing import Dict, Iterable, List, Tuple
from urllib.parse import urlsplit

import requests
from flask import Response, current_app, request

from graphql_gateway import config
from graphql_gateway.logger import get_logger

logger = get_logger()

BEARER_PREFIX = 'Bearer '

# Never forwarded in either direction
HOP_BY_HOP_HEADERS = frozenset([
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'proxy-connection',
    'te',
    'trailer',
    'transfer-encoding',
    'upgrade',
])

STREAM_CHUNK_SIZE = 8192


def has_bearer_credential(auth_header: str) -> bool:
    return auth_header.startswith(BEARER_PREFIX)


def filter_headers(headers: Iterable[Tuple[str, str]], drop: Iterable[str] = ()) -> List[Tuple[str, str]]:
    """Copy headers, leaving out hop-by-hop ones and anything in ``drop``."""
    headers = list(headers)
    skip = HOP_BY_HOP_HEADERS | {name.lower() for name in drop}

    # Headers named in Connection are hop-by-hop for this message too
    for name, value in headers:
        if name.lower() == 'connection':
            skip |= {token.strip().lower() for token in value.split(',')}

    return [(name, value) for name, value in headers if name.lower() not in skip]


def build_upstream_request(endpoint: str) -> Tuple[str, Dict[str, str]]:
    """Target URL and outbound headers for the current request."""
    url = endpoint
    if request.query_string:
        url = f"{endpoint}?{request.query_string.decode('latin-1')}"

    headers: Dict[str, str] = {}
    for name, value in filter_headers(request.headers.items(), drop=['host', 'x-forwarded-for']):
        headers[name] = f"{headers[name]}, {value}" if name in headers else value

    headers['Host'] = urlsplit(endpoint).netloc
    # Body is relayed undecoded: no compression unless the caller asked
    headers.setdefault('Accept-Encoding', 'identity')

    forwarded_for = request.headers.get('X-Forwarded-For')
    client_ip = request.remote_addr or ''
    headers['X-Forwarded-For'] = f"{forwarded_for}, {client_ip}" if forwarded_for else client_ip
    return url, headers


class RequestBody:
    """
    Inbound body relayed to the upstream as it is read.

    ``len`` lets requests send a Content-Length instead of chunking.
    """

    def __init__(self, stream, length: int):
        self.stream = stream
        self.len = length

    def read(self, size: int = -1) -> bytes:
        return self.stream.read(size)

    def __iter__(self):
        while True:
            chunk = self.read(STREAM_CHUNK_SIZE)
            if not chunk:
                return
            yield chunk


def request_body():
    """Stream bodies of known length; buffer the rest (chunked uploads)."""
    if request.content_length:
        return RequestBody(request.stream, request.content_length)
    return request.get_data()


def upstream_timeout() -> Tuple[float, float]:
    """(connect, read) timeout for the outbound call, from the server settings."""
    timeouts = current_app.config.get('GATEWAY_TIMEOUTS')
    if timeouts is None:
        return config.READ_TIMEOUT, config.WRITE_TIMEOUT
    return timeouts.read, timeouts.write


def stream_upstream(upstream: requests.Response):
    """Yield the upstream body exactly as received."""
    try:
        yield from upstream.raw.stream(STREAM_CHUNK_SIZE, decode_content=False)
    finally:
        upstream.close()


def graphql_proxy():
    """
    Proxy a GraphQL request to the upstream engine.

    Headers:
      Authorization: Bearer <token>
    """
    auth_header = request.headers.get('Authorization', '')
    if not has_bearer_credential(auth_header):
        return Response('Unauthorized\n', status=401, mimetype='text/plain')

    endpoint = config.GRAPHQL_ENDPOINT
    url, headers = build_upstream_request(endpoint)

    try:
        upstream = requests.request(
            request.method,
            url,
            headers=headers,
            data=request_body(),
            stream=True,
            allow_redirects=False,
            timeout=upstream_timeout()
        )
    except requests.RequestException as e:
        logger.error("graphql_proxy_error", endpoint=endpoint, method=request.method, error=str(e))
        return Response('Bad Gateway\n', status=502, mimetype='text/plain')

    response = Response(
        stream_upstream(upstream),
        status=upstream.status_code,
        headers=filter_headers(upstream.headers.items())
    )
    # Keep the upstream's headers as they are; Response adds a default type
    if 'Content-Type' not in upstream.headers:
        del response.headers['Content-Type']
    return response
