"""
Shared fixtures for the media job service tests.
"""

import os
import tempfile

# Configure the service before any test module imports it
_RUNTIME_DIR = tempfile.mkdtemp(prefix="mediajobs-tests-")
os.environ["UPLOAD_DIR"] = os.path.join(_RUNTIME_DIR, "uploads")
os.environ["LOG_DIR"] = os.path.join(_RUNTIME_DIR, "logs")
os.environ["API_KEYS"] = ""
os.environ["BASE_URL"] = ""
os.environ["CLEAR_ON_SHUTDOWN"] = "false"

import pytest

from mediajobs.engine import MediaInfo
from mediajobs.errors import ProbeError, TranscodeError
from mediajobs.orchestrator import JobOrchestrator
from mediajobs.store import AssetStore


class FakeEngine:
    """Records calls and writes placeholder outputs instead of running ffmpeg"""

    def __init__(self, duration=10.0):
        self.duration = duration
        self.probe_error = None
        self.fail_on_transcode = None
        self.probes = []
        self.transcodes = []

    @property
    def calls(self):
        return self.probes + self.transcodes

    def probe(self, path):
        self.probes.append(path)
        if self.probe_error:
            raise ProbeError(self.probe_error, {"path": path})
        return MediaInfo(
            duration_seconds=self.duration,
            has_valid_format=True,
            format_name="mp3",
            has_audio=True,
        )

    def transcode(self, path, target_format, output_path, start_offset=None,
                  clip_duration=None, audio_filter=None):
        self.transcodes.append({
            "path": path,
            "format": target_format,
            "output": output_path,
            "start_offset": start_offset,
            "clip_duration": clip_duration,
            "audio_filter": audio_filter,
        })
        if self.fail_on_transcode == len(self.transcodes):
            raise TranscodeError("Conversion failed: simulated encoder error")
        with open(output_path, "wb") as f:
            f.write(b"transcoded")
        return output_path


class FakeFetcher:
    """Drops a downloaded file in staging without touching the network"""

    def __init__(self, store):
        self.store = store
        self.urls = []
        self.fetched = []
        self.media_info = None

    def fetch(self, url, target_format):
        self.urls.append((url, target_format))
        path = self.store.staging_path(".mp4")
        with open(path, "wb") as f:
            f.write(b"downloaded")
        self.fetched.append(path)
        return path, self.media_info


@pytest.fixture
def store(tmp_path):
    return AssetStore(str(tmp_path / "uploads"))


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def fetcher(store):
    return FakeFetcher(store)


@pytest.fixture
def orchestrator(store, engine, fetcher):
    return JobOrchestrator(store, engine, fetcher)


@pytest.fixture
def stored_asset(store, tmp_path):
    """An asset already ingested into the store"""
    source = tmp_path / "source.mp3"
    source.write_bytes(b"ID3 fake audio")
    return store.create(str(source), "_source.mp3")


def stored_files(store):
    return sorted(
        name for name in os.listdir(store.root)
        if os.path.isfile(os.path.join(store.root, name))
    )


def staged_files(store):
    return sorted(os.listdir(store.staging_dir))
