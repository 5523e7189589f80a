"""
Media engine adapter over the ffprobe and ffmpeg command line tools
"""

import json
import logging
import math
import os
import subprocess

from . import config
from .errors import ProbeError, TranscodeError

logger = logging.getLogger(__name__)

# Encoder settings per output format
AUDIO_CODEC_SETTINGS = {
    "mp3": ["-c:a", "libmp3lame", "-b:a", "192k"],
    "aac": ["-c:a", "aac", "-b:a", "192k"],
    "m4a": ["-c:a", "aac", "-b:a", "192k"],
    "ogg": ["-c:a", "libvorbis", "-q:a", "6"],
    "opus": ["-c:a", "libopus", "-b:a", "128k"],
    "flac": ["-c:a", "flac"],
    "wav": ["-c:a", "pcm_s16le"],
}

VIDEO_CODEC_SETTINGS = {
    "mp4": ["-c:v", "libx264", "-crf", "23", "-c:a", "aac", "-movflags", "+faststart"],
    "mov": ["-c:v", "libx264", "-crf", "23", "-c:a", "aac"],
    "mkv": ["-c:v", "libx264", "-crf", "23", "-c:a", "aac"],
    "avi": ["-c:v", "mpeg4", "-q:v", "5", "-c:a", "libmp3lame"],
    "webm": ["-c:v", "libvpx-vp9", "-crf", "32", "-b:v", "0", "-c:a", "libopus"],
}

# Container names ffmpeg expects for "-f" where they differ from the extension
MUXER_NAMES = {
    "m4a": "ipod",
    "mkv": "matroska",
    "aac": "adts",
}


class MediaInfo:
    """Probe result for one media file"""

    def __init__(self, duration_seconds, has_valid_format, format_name="",
                 size=0, bit_rate=0, has_audio=False, has_video=False):
        self.duration_seconds = duration_seconds
        self.has_valid_format = has_valid_format
        self.format_name = format_name
        self.size = size
        self.bit_rate = bit_rate
        self.has_audio = has_audio
        self.has_video = has_video

    def to_dict(self):
        return {
            "duration": self.duration_seconds,
            "format_name": self.format_name,
            "size": self.size,
            "bit_rate": self.bit_rate,
            "has_audio": self.has_audio,
            "has_video": self.has_video,
        }

    def __repr__(self):
        return (
            f"MediaInfo(duration_seconds={self.duration_seconds!r}, "
            f"format_name={self.format_name!r})"
        )


def _to_float(value):
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 0.0
    return result if math.isfinite(result) else 0.0


def _to_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def format_seconds(value):
    """Render seconds the way ffmpeg and segment names expect: 4, 2.5"""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


class FFmpegEngine:
    """Runs one ffprobe/ffmpeg process per call and reports the outcome.

    Calls block the calling thread until the process exits. Nothing is
    retried.
    """

    def __init__(self, ffmpeg_binary=None, ffprobe_binary=None, timeout=None):
        self.ffmpeg_binary = ffmpeg_binary or config.FFMPEG_BINARY
        self.ffprobe_binary = ffprobe_binary or config.FFPROBE_BINARY
        self.timeout = timeout if timeout is not None else config.ENGINE_TIMEOUT_SECONDS

    def probe(self, path):
        """Extract duration and container info using ffprobe"""
        logger.info(f"Extracting media info from: {path}")

        cmd = [
            self.ffprobe_binary,
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            path,
        ]

        logger.debug(f"Running ffprobe command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, check=True, timeout=self.timeout
            )
            data = json.loads(result.stdout)
        except subprocess.CalledProcessError as e:
            logger.error(f"FFprobe failed for {path}: {e.stderr}")
            raise ProbeError(
                f"Unable to read media file: {(e.stderr or '').strip() or 'unsupported or corrupt file'}",
                {"path": path},
            )
        except subprocess.TimeoutExpired:
            logger.error(f"FFprobe timed out for {path}")
            raise ProbeError("Timed out reading media file", {"path": path})
        except FileNotFoundError:
            logger.error(f"FFprobe binary not found: {self.ffprobe_binary}")
            raise ProbeError("Media engine is not available", {"path": path})
        except json.JSONDecodeError:
            logger.error(f"Failed to parse media metadata for: {path}")
            raise ProbeError("Failed to parse media metadata", {"path": path})

        streams = data.get("streams", [])
        has_audio = any(s.get("codec_type") == "audio" for s in streams)
        has_video = any(s.get("codec_type") == "video" for s in streams)
        if not (has_audio or has_video):
            logger.error(f"No audio or video stream found in: {path}")
            raise ProbeError("No audio or video stream found", {"path": path})

        format_info = data.get("format", {})
        info = MediaInfo(
            duration_seconds=_to_float(format_info.get("duration")),
            has_valid_format=True,
            format_name=format_info.get("format_name", ""),
            size=_to_int(format_info.get("size")),
            bit_rate=_to_int(format_info.get("bit_rate")),
            has_audio=has_audio,
            has_video=has_video,
        )
        logger.info(f"Media info extracted successfully: {info.to_dict()}")
        return info

    def build_transcode_command(self, path, target_format, output_path,
                                start_offset=None, clip_duration=None,
                                audio_filter=None):
        target_format = target_format.lower()
        cmd = [self.ffmpeg_binary, "-hide_banner", "-nostdin", "-y"]

        # Seek on the input so clips start exactly at the offset
        if start_offset is not None:
            cmd.extend(["-ss", format_seconds(start_offset)])
        cmd.extend(["-i", path])
        if clip_duration is not None:
            cmd.extend(["-t", format_seconds(clip_duration)])

        if audio_filter:
            cmd.extend(["-af", audio_filter])

        if target_format in AUDIO_CODEC_SETTINGS:
            cmd.append("-vn")
            cmd.extend(AUDIO_CODEC_SETTINGS[target_format])
        elif target_format in VIDEO_CODEC_SETTINGS:
            cmd.extend(VIDEO_CODEC_SETTINGS[target_format])

        cmd.extend(["-f", MUXER_NAMES.get(target_format, target_format), output_path])
        return cmd

    def transcode(self, path, target_format, output_path, start_offset=None,
                  clip_duration=None, audio_filter=None):
        """Transcode ``path`` into ``output_path`` and return the output path.

        A failed run never leaves ``output_path`` behind.
        """
        logger.info(
            f"Transcoding {path} to {target_format} "
            f"(start={start_offset}, duration={clip_duration}, filter={audio_filter})"
        )
        cmd = self.build_transcode_command(
            path, target_format, output_path,
            start_offset=start_offset,
            clip_duration=clip_duration,
            audio_filter=audio_filter,
        )

        logger.debug(f"Running ffmpeg command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            self._discard_partial(output_path)
            logger.error(f"Transcode timed out for {path}")
            raise TranscodeError("Transcode timed out", {"path": path})
        except FileNotFoundError:
            logger.error(f"FFmpeg binary not found: {self.ffmpeg_binary}")
            raise TranscodeError("Media engine is not available", {"path": path})

        if result.returncode != 0:
            self._discard_partial(output_path)
            logger.error(f"Transcode failed: {result.stderr}")
            raise TranscodeError(
                f"Conversion failed: {(result.stderr or '').strip()}",
                {"path": path, "returncode": result.returncode},
            )

        if not os.path.exists(output_path):
            logger.error(f"FFmpeg reported success but produced no file: {output_path}")
            raise TranscodeError("Conversion produced no output", {"path": path})

        file_size = os.path.getsize(output_path)
        logger.info(f"Transcode completed: {os.path.basename(output_path)} ({file_size} bytes)")
        return output_path

    def _discard_partial(self, output_path):
        if os.path.exists(output_path):
            try:
                os.remove(output_path)
                logger.debug(f"Removed partial output: {output_path}")
            except OSError as e:
                logger.warning(f"Failed to remove partial output {output_path}: {e}")
