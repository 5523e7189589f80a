"""
Tests for RemoteFetcher strategy selection, HTTP downloads and yt-dlp downloads.
"""

import os

import pytest
import requests

from mediajobs.errors import (
    FetchError,
    InvalidAssetError,
    InvalidUrlError,
    SizeExceededError,
)
from mediajobs.fetcher import (
    HttpStrategy,
    RemoteFetcher,
    YouTubeStrategy,
    parse_http_url,
)

from conftest import FakeEngine, staged_files


class StubResponse:
    def __init__(self, chunks, status_code=200, headers=None):
        self.status_code = status_code
        self.headers = headers if headers is not None else {
            "content-type": "video/mp4",
            "content-length": str(sum(len(c) for c in chunks)),
        }
        self._chunks = list(chunks)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"status {self.status_code}")

    def iter_content(self, chunk_size):
        for chunk in self._chunks:
            yield chunk


class StubSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, stream=False, timeout=None):
        self.calls.append({"url": url, "stream": stream, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


class StubExtractor:
    def __init__(self, suitable):
        self._suitable = suitable

    def suitable(self, url):
        return self._suitable


class FakeYoutubeDL:
    instances = []

    def __init__(self, opts):
        self.opts = opts
        self.urls = []
        FakeYoutubeDL.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def extract_info(self, url, download=False):
        self.urls.append(url)
        return {"id": "dQw4w9WgXcQ", "ext": "webm"}

    def prepare_filename(self, info):
        path = self.opts["outtmpl"].replace("%(ext)s", info["ext"])
        with open(path, "wb") as f:
            f.write(b"video")
        return path


def _fetcher(store, session, engine=None, youtube=None):
    engine = engine or FakeEngine()
    fetcher = RemoteFetcher(store, engine, strategies=[youtube or YouTubeStrategy()])
    fetcher.generic = HttpStrategy(max_file_size=1024, timeout=5, session=session)
    return fetcher, engine


@pytest.mark.parametrize("url", [
    "",
    None,
    "not a url",
    "ftp://example.com/file.mp4",
    "https:///nohost.mp4",
    "file:///etc/passwd",
])
def test_invalid_urls_are_rejected(url):
    with pytest.raises(InvalidUrlError):
        parse_http_url(url)


class TestStrategySelection:

    @pytest.mark.parametrize("url", [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://m.youtube.com/watch?v=dQw4w9WgXcQ",
    ])
    def test_youtube_hosts(self, store, url):
        fetcher, _ = _fetcher(store, StubSession())
        assert fetcher.select_strategy(url).name == "youtube"

    def test_everything_else_is_generic(self, store):
        fetcher, _ = _fetcher(store, StubSession())
        assert fetcher.select_strategy("https://cdn.example.com/a.mp4").name == "http"

    def test_invalid_url_fails_before_network(self, store):
        session = StubSession()
        fetcher, _ = _fetcher(store, session)
        with pytest.raises(InvalidUrlError):
            fetcher.fetch("javascript:alert(1)", "mp4")
        assert session.calls == []


class TestHttpDownload:

    def test_download_is_probed_and_returned(self, store):
        session = StubSession(StubResponse([b"abc", b"def"]))
        fetcher, engine = _fetcher(store, session)

        path, info = fetcher.fetch("https://cdn.example.com/media/clip.mp4", "mp3")

        assert path.startswith(store.staging_dir)
        assert path.endswith(".mp4")
        with open(path, "rb") as f:
            assert f.read() == b"abcdef"
        assert engine.probes == [path]
        assert info.duration_seconds == engine.duration
        assert session.calls[0]["stream"] is True
        assert session.calls[0]["timeout"] == 5

    def test_invalid_media_is_deleted(self, store):
        session = StubSession(StubResponse([b"<html>nope</html>"]))
        engine = FakeEngine()
        engine.probe_error = "Invalid data found when processing input"
        fetcher, _ = _fetcher(store, session, engine=engine)

        with pytest.raises(InvalidAssetError):
            fetcher.fetch("https://example.com/page", "mp3")
        assert staged_files(store) == []

    def test_declared_size_over_limit(self, store):
        response = StubResponse([b"x"], headers={"content-length": "4096"})
        fetcher, engine = _fetcher(store, StubSession(response))

        with pytest.raises(SizeExceededError):
            fetcher.fetch("https://example.com/big.mp4", "mp4")
        assert engine.probes == []

    def test_streamed_size_over_limit(self, store):
        response = StubResponse([b"x" * 600, b"x" * 600], headers={})
        fetcher, _ = _fetcher(store, StubSession(response))

        with pytest.raises(SizeExceededError):
            fetcher.fetch("https://example.com/big.mp4", "mp4")
        assert staged_files(store) == []

    def test_request_errors_become_fetch_errors(self, store):
        session = StubSession(error=requests.exceptions.ConnectionError("refused"))
        fetcher, _ = _fetcher(store, session)

        with pytest.raises(FetchError, match="refused"):
            fetcher.fetch("https://example.com/a.mp4", "mp4")

    def test_http_error_status(self, store):
        session = StubSession(StubResponse([], status_code=404))
        fetcher, _ = _fetcher(store, session)

        with pytest.raises(FetchError, match="404"):
            fetcher.fetch("https://example.com/a.mp4", "mp4")
        assert staged_files(store) == []


class TestYouTubeDownload:

    @pytest.fixture(autouse=True)
    def fake_ytdl(self, monkeypatch):
        FakeYoutubeDL.instances = []
        monkeypatch.setattr("mediajobs.fetcher.YoutubeDL", FakeYoutubeDL)
        monkeypatch.setattr(
            "mediajobs.fetcher.get_info_extractor", lambda name: StubExtractor(True)
        )

    def test_audio_download(self, store):
        fetcher, engine = _fetcher(store, StubSession())

        path, info = fetcher.fetch("https://youtu.be/dQw4w9WgXcQ", "mp3")

        ydl = FakeYoutubeDL.instances[0]
        assert ydl.opts["format"] == "bestaudio/best"
        assert ydl.opts["noplaylist"] is True
        assert ydl.urls == ["https://youtu.be/dQw4w9WgXcQ"]
        assert path.endswith(".webm")
        assert os.path.exists(path)
        assert engine.probes == []
        assert info is None

    def test_video_download_uses_best_format(self, store):
        fetcher, _ = _fetcher(store, StubSession())
        fetcher.fetch("https://www.youtube.com/watch?v=dQw4w9WgXcQ", "mp4")
        assert FakeYoutubeDL.instances[0].opts["format"] == "best"

    def test_unrecognised_youtube_url(self, store, monkeypatch):
        monkeypatch.setattr(
            "mediajobs.fetcher.get_info_extractor", lambda name: StubExtractor(False)
        )
        fetcher, _ = _fetcher(store, StubSession())

        with pytest.raises(InvalidUrlError, match="YouTube"):
            fetcher.fetch("https://www.youtube.com/about", "mp3")
        assert FakeYoutubeDL.instances == []

    def test_download_error(self, store, monkeypatch):
        from yt_dlp.utils import DownloadError

        def failing_extract(self, url, download=False):
            raise DownloadError("Video unavailable")

        monkeypatch.setattr(FakeYoutubeDL, "extract_info", failing_extract)
        fetcher, _ = _fetcher(store, StubSession())

        with pytest.raises(FetchError, match="Video unavailable"):
            fetcher.fetch("https://youtu.be/dQw4w9WgXcQ", "mp3")


def test_real_extractor_accepts_watch_urls():
    assert YouTubeStrategy().validate("https://www.youtube.com/watch?v=dQw4w9WgXcQ") is None
