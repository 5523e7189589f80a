"""
Environment-driven configuration for the media job service
"""

import os


def _parse_set(value, prefix=""):
    return {f"{prefix}{item.strip().lower()}" for item in value.split(",") if item.strip()}


def _parse_flag(value):
    return str(value).lower() in ("true", "1", "yes", "on")


# Asset store
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")
URL_PREFIX = "/uploads"

# Limits
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", "104857600"))  # Default: 100MB
MAX_DURATION_SECONDS = float(os.getenv("MAX_DURATION_SECONDS", "3600"))

# Accepted upload mimetypes
allowed_mimetypes_str = os.getenv(
    "ALLOWED_UPLOAD_MIMETYPES",
    "audio/mpeg,audio/mp3,audio/wav,audio/x-wav,audio/wave,audio/flac,"
    "audio/x-flac,audio/aac,audio/x-aac,audio/ogg,audio/mp4,audio/x-m4a,"
    "audio/x-ms-wma,video/mp4,video/x-msvideo,video/avi,video/quicktime",
)
ALLOWED_UPLOAD_MIMETYPES = _parse_set(allowed_mimetypes_str)

# Supported output formats
audio_output_fmt_str = os.getenv(
    "SUPPORTED_AUDIO_OUTPUT_FORMATS", "mp3,wav,flac,aac,ogg,m4a,opus"
)
SUPPORTED_AUDIO_OUTPUT_FORMATS = _parse_set(audio_output_fmt_str)

video_output_fmt_str = os.getenv(
    "SUPPORTED_VIDEO_OUTPUT_FORMATS", "mp4,avi,mov,mkv,webm"
)
SUPPORTED_VIDEO_OUTPUT_FORMATS = _parse_set(video_output_fmt_str)

# Media engine
FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")
FFPROBE_BINARY = os.getenv("FFPROBE_BINARY", "ffprobe")
ENHANCE_AUDIO_FILTER = os.getenv("ENHANCE_AUDIO_FILTER", "afftdn")
_engine_timeout = os.getenv("ENGINE_TIMEOUT_SECONDS", "")
ENGINE_TIMEOUT_SECONDS = float(_engine_timeout) if _engine_timeout else None

# Remote fetcher
DOWNLOAD_TIMEOUT_SECONDS = int(os.getenv("DOWNLOAD_TIMEOUT_SECONDS", "30"))
YOUTUBE_HOSTS = _parse_set(
    os.getenv("YOUTUBE_HOSTS", "youtube.com,www.youtube.com,m.youtube.com,youtu.be")
)

# Lifecycle
CLEAR_ON_STARTUP = _parse_flag(os.getenv("CLEAR_ON_STARTUP", "true"))
CLEAR_ON_SHUTDOWN = _parse_flag(os.getenv("CLEAR_ON_SHUTDOWN", "false"))
