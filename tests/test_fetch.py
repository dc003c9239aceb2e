"""Tests for the remote fetcher and the proxy store."""

import os

import pytest
import requests

from imagegen.config import Config
from imagegen.errors import RemoteFetchError
from imagegen.fetch import ProxyStore, RemoteFetcher


class FakeResponse:

    def __init__(self, status_code=200, content=b""):
        self.status_code = status_code
        self.content = content


class FakeSession:

    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, timeout=None, verify=True):
        self.requests.append((url, timeout, verify))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def site(www):
    return Config(root_dir=str(www), base_url="https://example.com", fetch_user_agent="test-agent")


def test_fetch_returns_body(site):
    session = FakeSession(FakeResponse(200, b"x" * 64))
    fetcher = RemoteFetcher(site, session)

    assert fetcher.fetch("https://example.com/a.jpg") == b"x" * 64
    assert session.headers["User-Agent"] == "test-agent"
    assert session.requests == [("https://example.com/a.jpg", 2.0, True)]


@pytest.mark.parametrize("response, status", [
    (FakeResponse(404, b"x" * 64), 404),
    (FakeResponse(200, b"tiny"), 200),
])
def test_fetch_rejects_bad_responses(site, response, status):
    with pytest.raises(RemoteFetchError) as e:
        RemoteFetcher(site, FakeSession(response)).fetch("https://example.com/a.jpg")
    assert e.value.status == status


def test_fetch_wraps_network_errors(site):
    session = FakeSession(error=requests.ConnectionError("refused"))
    with pytest.raises(RemoteFetchError):
        RemoteFetcher(site, session).fetch("https://example.com/a.jpg")


def test_default_session_is_configured(site):
    fetcher = RemoteFetcher(site)
    assert fetcher.session.max_redirects == 2
    assert fetcher.session.get_adapter("https://example.com").max_retries.total == 1


def test_proxy_store_saves_once(site, www):
    session = FakeSession(FakeResponse(200, b"image bytes"))
    store = ProxyStore(site, RemoteFetcher(site, session))
    url = "https://cdn.other.org/photos/lake.jpg"
    url_hash = store.url_hash(url)

    path = store.save(url)
    assert path == os.path.join(str(www), "_cache", "_proxy", url_hash[:3], f"{url_hash}.jpg")
    with open(path, "rb") as f:
        assert f.read() == b"image bytes"

    store.save(url, url_hash)
    assert len(session.requests) == 1
