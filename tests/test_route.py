"""Tests for URL matching, response headers and the error to response mapping."""

import pytest

from conftest import make_location, write_image
from imagegen.config import Config
from imagegen.errors import FilesystemError
from imagegen.generator import GenerationCoordinator
from imagegen.optimizer import NullOptimizer
from imagegen.paths import PathResolver
from imagegen.route import ImageRoute, cache_headers, content_type_for
from imagegen.transform import TransformEngine

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class RaisingCoordinator:

    def __init__(self, error):
        self.error = error

    def run(self, location, current_url=None):
        raise self.error


def _route(config):
    coordinator = GenerationCoordinator(config, PathResolver(config), TransformEngine(config), NullOptimizer())
    return ImageRoute(config, coordinator)


def _url(params="w100h100", basename="forest", extension="jpg", hash=None):
    location = make_location("images", basename, params, extension, hash)
    return f"images/{location.file_name}"


def test_match():
    location = ImageRoute.match("/images/2024/forest__w200h100-scc_abc123.JPG?v=2")
    assert location.dirname == "images/2024"
    assert location.basename == "forest"
    assert location.params == "w200h100-scc"
    assert location.hash == "abc123"
    assert location.extension == "JPG"


def test_match_without_dirname():
    location = ImageRoute.match("forest__h100_abc123.png")
    assert location.dirname == ""
    assert location.params == "h100"


@pytest.mark.parametrize("url", ["images/forest.jpg", "images/forest__x100_abc123.jpg", "images/forest__w100_abc123.bmp"])
def test_no_match(url):
    assert ImageRoute.match(url) is None


def test_content_type_for():
    assert content_type_for("a.png") == "image/png"
    assert content_type_for("a.GIF") == "image/gif"
    assert content_type_for("a.jpeg") == "image/jpeg"


def test_cache_headers(config):
    headers = cache_headers("a.jpg", config, now=0)
    assert headers == {
        "Pragma": "public",
        "Cache-Control": "max-age=86400, immutable, public",
        "Expires": "Thu, 01 Jan 1970 12:00:00 GMT",
        "Content-Type": "image/jpeg",
    }


def test_cache_headers_on_localhost(www):
    config = Config(root_dir=str(www), is_localhost=True)
    assert cache_headers("a.png", config)["Cache-Control"] == "max-age=86400"


def test_success(config, forest):
    response = _route(config).handle(_url())
    assert response.status == 200
    assert response.headers["Content-Type"] == "image/jpeg"
    assert response.headers["Cache-Control"].startswith("max-age=86400")
    assert response.body[:2] == b"\xff\xd8"


def test_hash_mismatch_is_forbidden(config, forest):
    response = _route(config).handle(_url(hash="zzzzzz"))
    assert response.status == 403
    assert response.body.startswith(PNG_SIGNATURE)


def test_hash_mismatch_redirects_in_debug_mode(www, forest):
    config = Config(root_dir=str(www), optimizer="none", debug_mode=True)
    current_url = f"https://example.com/{_url(hash='zzzzzz')}"
    response = _route(config).handle(_url(hash="zzzzzz"), current_url=current_url)

    assert response.status == 301
    assert response.headers["Location"] == f"https://example.com/{_url()}"


def test_invalid_request(config, forest):
    response = _route(config).handle(_url(params="w0h100"))
    assert response.status == 400
    assert response.body.startswith(PNG_SIGNATURE)


def test_parent_traversal_is_rejected(config):
    response = _route(config).handle("images/../forest__w100h100_abcdef.jpg")
    assert response.status == 400


def test_missing_source(config):
    response = _route(config).handle(_url(basename="missing"))
    assert response.status == 404
    assert response.headers["Content-Type"] == "image/png"


def test_unknown_url(config):
    response = _route(config).handle("images/forest.jpg")
    assert response.status == 404
    assert response.body == b"Not Found"


def test_transform_error_serves_uncached_placeholder(config, www):
    source = www / "images" / "forest.jpg"
    source.parent.mkdir(parents=True)
    source.write_bytes(b"not an image")

    response = _route(config).handle(_url())
    assert response.status == 200
    assert response.headers["Cache-Control"] == "no-store"
    assert response.body.startswith(PNG_SIGNATURE)


def test_filesystem_error(config):
    response = ImageRoute(config, RaisingCoordinator(FilesystemError("disk full"))).handle(_url())
    assert response.status == 500
    assert b"disk full" not in response.body


def test_unexpected_error_propagates(config):
    route = ImageRoute(config, RaisingCoordinator(RuntimeError("boom")))
    with pytest.raises(RuntimeError):
        route.handle(_url())


def test_png_request_from_jpeg_source(config, www):
    write_image(www / "images" / "forest.jpg")
    response = _route(config).handle(_url(extension="png"))
    assert response.status == 200
    assert response.headers["Content-Type"] == "image/png"
    assert response.body.startswith(PNG_SIGNATURE)
