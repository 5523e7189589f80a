"""
Media job orchestration: asset store, media engine, remote fetcher
"""

from .engine import FFmpegEngine
from .fetcher import RemoteFetcher
from .orchestrator import JobOrchestrator
from .store import AssetStore

__version__ = "1.0.0"


def build_orchestrator(upload_dir=None):
    """Wire the default store, ffmpeg engine and fetcher together"""
    store = AssetStore(upload_dir)
    engine = FFmpegEngine()
    fetcher = RemoteFetcher(store, engine)
    return JobOrchestrator(store, engine, fetcher)
