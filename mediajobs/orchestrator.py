"""
Job orchestrator: the operations behind every HTTP endpoint.

Each operation composes the asset store, the media engine and, for remote
ingestion, the remote fetcher. Parameters are validated before any
external call. Engine and fetch failures are not retried; they are raised
again with the operation and asset recorded in their context.
"""

import logging
import math
import os
from numbers import Real

import magic
from werkzeug.utils import secure_filename

from . import config
from .engine import format_seconds
from .errors import (
    DurationExceededError,
    EngineError,
    FetchError,
    InvalidParameterError,
    MediaJobError,
    ProbeError,
    SizeExceededError,
    UnsupportedTypeError,
)

logger = logging.getLogger(__name__)

SNIFF_BYTES = 1024


def segment_offsets(total_duration, segment_duration):
    """Start offsets ``0, d, 2d, ...`` strictly below ``total_duration``"""
    offsets = []
    index = 0
    while True:
        start = index * segment_duration
        if start >= total_duration:
            return offsets
        offsets.append(start)
        index += 1


def parse_segment_duration(value):
    """Validate a segment length given as a number or numeric string"""
    if isinstance(value, bool) or value is None:
        raise InvalidParameterError("duration must be a positive number")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise InvalidParameterError("duration must be a positive number")
    if not isinstance(value, Real):
        raise InvalidParameterError("duration must be a positive number")
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        raise InvalidParameterError("duration must be a positive number")
    return int(value) if value.is_integer() else value


class JobOrchestrator:
    """Media job operations over a store, an engine and a fetcher"""

    def __init__(self, store, engine, fetcher=None, max_file_size=None,
                 max_duration=None, allowed_mimetypes=None,
                 audio_formats=None, video_formats=None, enhance_filter=None):
        self.store = store
        self.engine = engine
        self.fetcher = fetcher
        self.max_file_size = max_file_size or config.MAX_FILE_SIZE
        self.max_duration = max_duration or config.MAX_DURATION_SECONDS
        self.allowed_mimetypes = allowed_mimetypes or config.ALLOWED_UPLOAD_MIMETYPES
        self.audio_formats = audio_formats or config.SUPPORTED_AUDIO_OUTPUT_FORMATS
        self.video_formats = video_formats or config.SUPPORTED_VIDEO_OUTPUT_FORMATS
        self.enhance_filter = enhance_filter or config.ENHANCE_AUDIO_FILTER

    # Validation helpers

    def _check_format(self, target_format):
        if not isinstance(target_format, str) or not target_format.strip():
            raise InvalidParameterError("format is required")
        target_format = target_format.strip().lower().lstrip(".")
        if target_format not in self.audio_formats | self.video_formats:
            supported = sorted(self.audio_formats | self.video_formats)
            raise InvalidParameterError(
                f"Unsupported format '{target_format}'. Supported formats: {', '.join(supported)}"
            )
        return target_format

    def _check_content_type(self, stream, content_type):
        declared = (content_type or "").split(";")[0].strip().lower()
        if declared in self.allowed_mimetypes:
            return declared

        head = stream.read(SNIFF_BYTES)
        stream.seek(0)
        mime_type = magic.from_buffer(head, mime=True)
        logger.debug(f"Declared type '{declared}', detected MIME type: {mime_type}")
        if mime_type in self.allowed_mimetypes:
            return mime_type

        logger.error(f"Invalid file type: declared={declared}, detected={mime_type}")
        raise UnsupportedTypeError(
            f"Unsupported file type: {declared or mime_type}"
        )

    def _check_size(self, stream):
        stream.seek(0, 2)
        file_size = stream.tell()
        stream.seek(0)
        logger.info(f"Uploaded file size: {file_size} bytes ({file_size/1024/1024:.1f} MB)")
        if file_size > self.max_file_size:
            logger.error(f"Uploaded file too large: {file_size} bytes > {self.max_file_size} bytes")
            raise SizeExceededError(
                f"File too large: limit is {self.max_file_size/1024/1024:.0f} MB"
            )
        return file_size

    def _probe_within_limits(self, path, info=None):
        if info is None:
            info = self.engine.probe(path)
        if info.duration_seconds <= 0:
            raise ProbeError("Media file has no measurable duration", {"path": path})
        if info.duration_seconds > self.max_duration:
            logger.warning(
                f"Rejected {path}: duration {info.duration_seconds}s > {self.max_duration}s"
            )
            raise DurationExceededError(info.duration_seconds, self.max_duration)
        return info

    def _transcode_to_store(self, source_path, target_format, stored_name, **options):
        """Transcode into staging, then publish the finished file"""
        staged = self.store.staging_path(f".{target_format}")
        try:
            self.engine.transcode(source_path, target_format, staged, **options)
            return self.store.publish(staged, stored_name)
        finally:
            self.store.discard(staged)

    # Operations

    def ingest_upload(self, stream, filename, content_type=None):
        """Validate, probe and store an uploaded file.

        Returns ``{"id", "durationSeconds"}``.
        """
        if stream is None or not filename:
            raise InvalidParameterError("No file provided")

        logger.info(f"Saving uploaded file: {filename}")
        self._check_content_type(stream, content_type)
        self._check_size(stream)

        safe_name = secure_filename(filename) or "upload"
        staged = self.store.staging_path(os.path.splitext(safe_name)[1].lower())
        try:
            with open(staged, "wb") as f:
                while True:
                    chunk = stream.read(1024 * 1024)
                    if not chunk:
                        break
                    f.write(chunk)

            info = self._probe_within_limits(staged)
            asset = self.store.create(staged, f"_{safe_name}")
        except MediaJobError as e:
            raise e.add_context("upload", filename=filename)
        finally:
            self.store.discard(staged)

        asset.duration_seconds = info.duration_seconds
        logger.info(f"Upload stored as {asset.stored_name} ({info.duration_seconds}s)")
        return {"id": asset.id, "durationSeconds": info.duration_seconds}

    def ingest_remote(self, url, target_format):
        """Download a remote video, transcode it and store the result.

        Returns ``{"id", "url"}`` where ``url`` points at the stored file.
        """
        target_format = self._check_format(target_format)
        if self.fetcher is None:
            raise FetchError("Remote downloads are not configured")

        downloaded = None
        try:
            downloaded, info = self.fetcher.fetch(url, target_format)
            self._probe_within_limits(downloaded, info)

            staged = self.store.staging_path(f".{target_format}")
            try:
                self.engine.transcode(downloaded, target_format, staged)
                asset = self.store.create(staged, f".{target_format}")
            finally:
                self.store.discard(staged)
        except (EngineError, FetchError) as e:
            raise e.add_context("download", url=url)
        finally:
            self.store.discard(downloaded)

        logger.info(f"Remote media {url} stored as {asset.stored_name}")
        return {"id": asset.id, "url": asset.url}

    def enhance_audio(self, file_id):
        """Apply noise reduction and store ``{id}_enhanced.mp3``"""
        asset = self.store.resolve_by_prefix(file_id)
        try:
            output = self._transcode_to_store(
                asset.path, "mp3", f"{asset.id}_enhanced.mp3",
                audio_filter=self.enhance_filter,
            )
        except EngineError as e:
            raise e.add_context("enhance", file_id=file_id, asset=asset.stored_name)
        return {"url": output.url}

    def split_audio(self, file_id, segment_duration):
        """Cut an asset into consecutive mp3 clips of ``segment_duration``.

        Clips are transcoded one after the other. If one fails the whole
        split fails; clips already written stay in the store.
        """
        segment_duration = parse_segment_duration(segment_duration)
        asset = self.store.resolve_by_prefix(file_id)

        segments = []
        try:
            total_duration = self.engine.probe(asset.path).duration_seconds
            if total_duration <= 0:
                raise ProbeError(
                    "Media file has no measurable duration", {"path": asset.path}
                )
            offsets = segment_offsets(total_duration, segment_duration)
            logger.info(
                f"Splitting {asset.stored_name} ({total_duration}s) "
                f"into {len(offsets)} segments of {segment_duration}s"
            )
            for start in offsets:
                stored_name = f"{asset.id}_segment_{format_seconds(start)}.mp3"
                output = self._transcode_to_store(
                    asset.path, "mp3", stored_name,
                    start_offset=start, clip_duration=segment_duration,
                )
                segments.append(output.stored_name)
        except EngineError as e:
            # TODO: roll back the segments written before the failure instead of leaving them orphaned
            raise e.add_context(
                "split", file_id=file_id, asset=asset.stored_name, completed=list(segments)
            )

        return {"segments": segments}

    def convert(self, file_id, target_format):
        """Transcode a whole asset into ``{id}_converted.{format}``"""
        target_format = self._check_format(target_format)
        asset = self.store.resolve_by_prefix(file_id)
        try:
            output = self._transcode_to_store(
                asset.path, target_format, f"{asset.id}_converted.{target_format}"
            )
        except EngineError as e:
            raise e.add_context("convert", file_id=file_id, asset=asset.stored_name)
        return {"url": output.url}

    def resolve_for_download(self, file_id=None, segment=None):
        """Map a file id, or a literal segment name, to its public URL"""
        if segment:
            asset = self.store.resolve_literal(segment)
        else:
            asset = self.store.resolve_by_prefix(file_id)
        return {"url": asset.url}

    def clear_all(self):
        removed = self.store.purge()
        return {"status": "ok", "removed": removed}
