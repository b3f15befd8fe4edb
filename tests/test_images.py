import httpx
import pytest

import embywrapped.images as images_module
from embywrapped.images import ImageFetchError, ImageProxy, is_allowed_url


class _FakeResponse:
    def __init__(self, status_code: int, content: bytes = b"", headers=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}


class _FakeAsyncClient:
    def __init__(self, responses, calls):
        self._responses = responses
        self._calls = calls
        self.redirect_flags = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def get(self, url, timeout=None, follow_redirects=False):
        self._calls.append(url)
        self.redirect_flags.append(follow_redirects)
        response = self._responses[url]
        if isinstance(response, Exception):
            raise response
        return response


def _install(monkeypatch, responses):
    calls = []
    monkeypatch.setattr(
        images_module.httpx, "AsyncClient", lambda *a, **kw: _FakeAsyncClient(responses, calls)
    )
    return calls


def test_allowed_urls():
    emby = "http://media.example.com:8096"
    assert is_allowed_url("https://image.tmdb.org/t/p/w342/a.jpg", emby)
    assert is_allowed_url("https://www.themoviedb.org/t/p/a.jpg", emby)
    assert is_allowed_url("http://media.example.com:8096/Items/1/Images/Primary", emby)
    assert is_allowed_url("http://localhost:8096/x", emby)
    assert is_allowed_url("http://192.168.1.20/x", emby)
    assert is_allowed_url("http://10.0.0.5/x", emby)
    assert is_allowed_url("http://172.20.0.2/x", emby)


def test_rejected_urls():
    emby = "http://media.example.com:8096"
    assert not is_allowed_url("https://evil.example.org/a.jpg", emby)
    assert not is_allowed_url("https://image.tmdb.org.evil.com/a.jpg", emby)
    assert not is_allowed_url("http://172.32.0.1/x", emby)
    assert not is_allowed_url("http://8.8.8.8/x", emby)
    assert not is_allowed_url("file:///etc/passwd", emby)
    assert not is_allowed_url("not a url", emby)


@pytest.mark.asyncio
async def test_fetch_downloads_then_serves_from_disk(monkeypatch, tmp_path):
    url = "https://image.tmdb.org/t/p/w342/a.jpg"
    calls = _install(
        monkeypatch, {url: _FakeResponse(200, b"jpeg-bytes", {"content-type": "image/png"})}
    )
    proxy = ImageProxy(cache_dir=tmp_path / "images")

    first = await proxy.fetch(url)
    assert first.content == b"jpeg-bytes"
    assert first.content_type == "image/png"
    assert not first.cache_hit

    second = await proxy.fetch(url)
    assert second.content == b"jpeg-bytes"
    assert second.content_type == "image/png"
    assert second.cache_hit
    assert calls == [url]


@pytest.mark.asyncio
async def test_fetch_defaults_content_type(monkeypatch, tmp_path):
    url = "https://image.tmdb.org/t/p/w342/b.jpg"
    _install(monkeypatch, {url: _FakeResponse(200, b"data")})
    image = await ImageProxy(cache_dir=tmp_path).fetch(url)
    assert image.content_type == "image/jpeg"


@pytest.mark.asyncio
async def test_fetch_propagates_upstream_status(monkeypatch, tmp_path):
    url = "https://image.tmdb.org/t/p/w342/missing.jpg"
    _install(monkeypatch, {url: _FakeResponse(404)})
    with pytest.raises(ImageFetchError) as excinfo:
        await ImageProxy(cache_dir=tmp_path).fetch(url)
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_fetch_transport_error(monkeypatch, tmp_path):
    url = "https://image.tmdb.org/t/p/w342/c.jpg"
    _install(monkeypatch, {url: httpx.ConnectError("refused")})
    with pytest.raises(ImageFetchError) as excinfo:
        await ImageProxy(cache_dir=tmp_path).fetch(url)
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_cache_write_failure_still_serves_image(monkeypatch, tmp_path):
    url = "https://image.tmdb.org/t/p/w342/d.jpg"
    _install(monkeypatch, {url: _FakeResponse(200, b"data")})
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")

    image = await ImageProxy(cache_dir=blocker).fetch(url)
    assert image.content == b"data"


@pytest.mark.asyncio
async def test_fetch_refuses_redirects(monkeypatch, tmp_path):
    url = "https://image.tmdb.org/t/p/w342/moved.jpg"
    responses = {url: _FakeResponse(302, headers={"location": "http://169.254.169.254/"})}
    clients = []

    def _make_client(*args, **kwargs):
        client = _FakeAsyncClient(responses, [])
        clients.append(client)
        return client

    monkeypatch.setattr(images_module.httpx, "AsyncClient", _make_client)
    proxy = ImageProxy(cache_dir=tmp_path)
    with pytest.raises(ImageFetchError) as excinfo:
        await proxy.fetch(url)
    assert excinfo.value.status_code == 302
    assert clients[0].redirect_flags == [False]
    assert list(tmp_path.iterdir()) == []
