"""Tests for the encoded URL builder."""

import pytest

from imagegen.config import Config
from imagegen.errors import InvalidRequestError
from imagegen.fetch import ProxyStore
from imagegen.params import verification_hash
from imagegen.urls import build_url

PARAMS = {"w": 200, "h": 100}
SUFFIX = f"__w200h100_{verification_hash('w200h100')}"


class FakeProxy:

    def __init__(self):
        self.saved = []

    url_hash = staticmethod(ProxyStore.url_hash)

    def save(self, url, url_hash=None):
        self.saved.append((url, url_hash))
        return f"/tmp/{url_hash}"


@pytest.fixture
def site(www):
    return Config(root_dir=str(www), base_url="https://example.com")


def test_relative_path(config):
    assert build_url("/images/forest.jpg", PARAMS, config) == f"/images/forest{SUFFIX}.jpg"


def test_scale_and_crop_params(config):
    params = {"w": 200, "h": 100, "sc": "c", "cr": "tl"}
    expected_hash = verification_hash("w200h100-scc-ctl")
    assert build_url("images/forest.png", params, config) == f"images/forest__w200h100-scc-ctl_{expected_hash}.png"


def test_encoded_url_is_re_encoded(config):
    assert build_url("/images/forest__w100h100_abcdef.jpg", PARAMS, config) == f"/images/forest{SUFFIX}.jpg"


def test_missing_image_uses_placeholder(site):
    assert build_url(None, PARAMS, site) == f"https://example.com/placeholder{SUFFIX}.png"
    assert build_url("#INVALID_IMAGE#", PARAMS, site) == f"https://example.com/placeholder{SUFFIX}.png"


def test_own_host_keeps_origin(site):
    proxy = FakeProxy()
    url = build_url("https://example.com/images/forest.jpg", PARAMS, site, proxy)
    assert url == f"https://example.com/images/forest{SUFFIX}.jpg"
    assert proxy.saved == []


def test_own_host_with_port(site):
    url = build_url("http://example.com:8080/images/forest.jpg", PARAMS, site, FakeProxy())
    assert url == f"http://example.com:8080/images/forest{SUFFIX}.jpg"


def test_foreign_host_is_proxied(site):
    proxy = FakeProxy()
    source = "https://cdn.other.org/photos/lake.jpg"
    url_hash = ProxyStore.url_hash(source)

    url = build_url(source, PARAMS, site, proxy)
    assert url == f"https://example.com/image-generator-proxy/{url_hash}{SUFFIX}.jpg"
    assert proxy.saved == [(source, url_hash)]


def test_invalid_url(config):
    with pytest.raises(InvalidRequestError):
        build_url("no-extension", PARAMS, config)
    with pytest.raises(InvalidRequestError):
        build_url("/images/forest.jpg", {"w": 200}, config)
