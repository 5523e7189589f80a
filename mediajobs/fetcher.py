"""
Remote media fetcher.

YouTube links are downloaded through yt-dlp; every other URL is fetched
with a plain streamed HTTP GET and validated with the media engine.
"""

import logging
import os
from urllib.parse import urlparse

import requests
from yt_dlp import YoutubeDL
from yt_dlp.extractor import get_info_extractor
from yt_dlp.utils import DownloadError

from . import config
from .errors import (
    FetchError,
    InvalidAssetError,
    InvalidUrlError,
    ProbeError,
    SizeExceededError,
)

logger = logging.getLogger(__name__)


def parse_http_url(url):
    """Return the parsed URL or raise InvalidUrlError"""
    if not isinstance(url, str) or not url.strip():
        raise InvalidUrlError("url is required")
    parsed_url = urlparse(url.strip())
    if parsed_url.scheme not in ("http", "https") or not parsed_url.netloc:
        logger.error(f"Invalid URL format: {url}")
        raise InvalidUrlError(f"Invalid URL: {url}", {"url": url})
    return parsed_url


class YouTubeStrategy:
    """Download a single video from YouTube with yt-dlp"""

    name = "youtube"

    def __init__(self, hosts=None, max_file_size=None):
        self.hosts = hosts or config.YOUTUBE_HOSTS
        self.max_file_size = max_file_size or config.MAX_FILE_SIZE

    def matches(self, parsed_url):
        host = (parsed_url.hostname or "").lower()
        return host in self.hosts

    def validate(self, url):
        if not get_info_extractor("Youtube").suitable(url):
            logger.error(f"Not a valid YouTube video URL: {url}")
            raise InvalidUrlError(f"Invalid YouTube URL: {url}", {"url": url})

    def ydl_options(self, target_format, output_base):
        return {
            "format": "best" if target_format == "mp4" else "bestaudio/best",
            "outtmpl": f"{output_base}.%(ext)s",
            "noplaylist": True,
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "max_filesize": self.max_file_size,
        }

    def download(self, url, target_format, output_base):
        ydl_opts = self.ydl_options(target_format, output_base)
        logger.debug(f"Starting yt-dlp download from: {url}")
        try:
            with YoutubeDL(ydl_opts) as ydl:
                info = ydl.extract_info(url, download=True)
                if not info:
                    raise FetchError(f"No video information returned for {url}", {"url": url})
                local_path = ydl.prepare_filename(info)
        except DownloadError as e:
            logger.error(f"yt-dlp download failed for {url}: {e}")
            raise FetchError(f"Failed to download video: {e}", {"url": url})

        if not os.path.exists(local_path):
            # max_filesize makes yt-dlp skip the download instead of failing
            logger.error(f"yt-dlp produced no file for {url}")
            raise SizeExceededError("File too large", {"url": url})

        logger.info(f"Download completed: {local_path}")
        return local_path


class HttpStrategy:
    """Stream a file over HTTP with a size ceiling"""

    name = "http"

    def __init__(self, max_file_size=None, timeout=None, session=None):
        self.max_file_size = max_file_size or config.MAX_FILE_SIZE
        self.timeout = timeout or config.DOWNLOAD_TIMEOUT_SECONDS
        self.session = session or requests

    def matches(self, parsed_url):
        return True

    def validate(self, url):
        parse_http_url(url)

    def download(self, url, target_format, output_base):
        ext = os.path.splitext(urlparse(url).path)[1].lower()
        if not ext or len(ext) > 6:
            ext = ""
        temp_path = f"{output_base}{ext}"

        try:
            logger.debug(f"Starting download from: {url}")
            response = self.session.get(url, stream=True, timeout=self.timeout)
            response.raise_for_status()

            content_type = response.headers.get("content-type", "").lower()
            media_types = ["video", "audio", "application/octet-stream"]
            if not any(media_type in content_type for media_type in media_types):
                # Some servers don't set a correct content-type; the probe decides
                logger.warning(f"Content type '{content_type}' may not be a media file")

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit():
                file_size = int(content_length)
                logger.info(f"Expected file size: {file_size} bytes ({file_size/1024/1024:.1f} MB)")
                if file_size > self.max_file_size:
                    logger.error(f"File too large: {file_size} bytes > {self.max_file_size} bytes")
                    raise SizeExceededError("File too large", {"url": url})

            downloaded = 0
            with open(temp_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)
                        downloaded += len(chunk)
                        if downloaded > self.max_file_size:
                            logger.error(f"Downloaded file too large: {downloaded} bytes")
                            raise SizeExceededError("File too large", {"url": url})

        except requests.exceptions.RequestException as e:
            self._discard(temp_path)
            logger.error(f"Request failed for URL {url}: {str(e)}")
            raise FetchError(f"Failed to download media: {str(e)}", {"url": url})
        except SizeExceededError:
            self._discard(temp_path)
            raise

        logger.info(f"Download completed: {temp_path} ({downloaded} bytes)")
        return temp_path

    def _discard(self, path):
        if os.path.exists(path):
            os.remove(path)
            logger.debug(f"Cleaned up temp file: {path}")


class RemoteFetcher:
    """Pick a download strategy per URL and return a local file path.

    fetch() returns (local_path, media_info). Generic downloads are probed
    before being handed back and carry their MediaInfo; a file the engine
    cannot read is deleted and reported as InvalidAssetError. Platform
    downloads come back with media_info None.
    """

    def __init__(self, store, engine, strategies=None):
        self.store = store
        self.engine = engine
        self.generic = HttpStrategy()
        self.strategies = strategies if strategies is not None else [YouTubeStrategy()]

    def select_strategy(self, url):
        parsed_url = parse_http_url(url)
        for strategy in self.strategies:
            if strategy.matches(parsed_url):
                return strategy
        return self.generic

    def fetch(self, url, target_format):
        url = url.strip() if isinstance(url, str) else url
        strategy = self.select_strategy(url)
        strategy.validate(url)
        logger.info(f"Downloading media from URL: {url} (strategy: {strategy.name})")

        output_base = self.store.staging_path()
        local_path = strategy.download(url, target_format, output_base)

        info = None
        if strategy is self.generic:
            try:
                info = self.engine.probe(local_path)
            except ProbeError as e:
                self.store.discard(local_path)
                logger.error(f"Downloaded file is not valid media: {url}")
                raise InvalidAssetError(
                    f"Downloaded file is not a valid media file: {e.message}",
                    {"url": url},
                )
        return local_path, info
