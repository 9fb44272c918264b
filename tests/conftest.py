"""Pytest configuration and fixtures."""

import threading

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from graphql_gateway import config
from graphql_gateway import proxy
from graphql_gateway.app import create_server
from graphql_gateway.server import Server

UPSTREAM_ENDPOINT = 'https://graphql.example.com/api/graphql-engine/v1/graphql'


class FakeRaw:
    def __init__(self, body: bytes):
        self.body = body

    def stream(self, amt, decode_content=None):
        for i in range(0, len(self.body), amt):
            yield self.body[i:i + amt]


class FakeUpstreamResponse:
    """Stand-in for a streamed requests.Response."""

    def __init__(self, status_code=200, body=b'', headers=None):
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.raw = FakeRaw(body)
        self.closed = False

    def close(self):
        self.closed = True


class FakeUpstream:
    """Records outbound calls made through requests.request."""

    def __init__(self):
        self.calls = []
        self.response = FakeUpstreamResponse(
            200, b'{"data":{"ok":true}}', {'Content-Type': 'application/json'}
        )
        self.error = None

    def __call__(self, method, url, **kwargs):
        data = kwargs.get('data')
        body = data.read() if hasattr(data, 'read') else data
        self.calls.append({'method': method, 'url': url, 'body': body, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def upstream(monkeypatch):
    fake = FakeUpstream()
    monkeypatch.setattr(config, 'GRAPHQL_ENDPOINT', UPSTREAM_ENDPOINT)
    monkeypatch.setattr(proxy.requests, 'request', fake)
    return fake


@pytest.fixture
def static_dir(tmp_path):
    directory = tmp_path / 'static'
    directory.mkdir()
    (directory / 'index.html').write_text('<h1>gateway</h1>')
    return directory


@pytest.fixture
def gateway(static_dir):
    return create_server(addr='127.0.0.1:0', static_dir=str(static_dir))


@pytest.fixture
def client(gateway):
    app = gateway.build_app()
    app.testing = True
    return app.test_client()


@pytest.fixture
def http():
    """HTTP session that ignores proxy settings from the environment."""
    session = requests.Session()
    session.trust_env = False
    yield session
    session.close()


class ServerThread:
    """Runs Server.start() in a background thread with its own shutdown event."""

    def __init__(self, server: Server):
        self.server = server
        self.shutdown_event = threading.Event()
        self.error = None
        self.thread = threading.Thread(target=self._run, daemon=True)

    def _run(self):
        try:
            self.server.start(self.shutdown_event)
        except Exception as e:
            self.error = e

    def __enter__(self):
        self.thread.start()
        assert self.server.ready.wait(5), "server did not bind"
        return self

    def __exit__(self, *exc):
        self.stop()

    def url(self, path):
        return f"http://127.0.0.1:{self.server.address[1]}{path}"

    def stop(self, timeout=10):
        self.shutdown_event.set()
        self.thread.join(timeout)
        return not self.thread.is_alive()


@pytest.fixture
def serve():
    return ServerThread
