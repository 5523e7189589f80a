#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Media Job Service
A Flask front-end that ingests media uploads and remote videos, and
enhances, splits and converts them through FFmpeg
"""

import atexit
import os
import time
import uuid
import logging
import logging.handlers
from functools import wraps

from flask import Flask, request, jsonify, send_from_directory
from werkzeug.exceptions import HTTPException

from mediajobs import build_orchestrator, config
from mediajobs.errors import InvalidParameterError, MediaJobError


# Configure logging
def setup_logging():
    """Setup console and rotating file logging"""
    log_dir = os.getenv("LOG_DIR", "./logs")
    os.makedirs(log_dir, exist_ok=True)

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    detailed_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] [%(name)s:%(lineno)d] '
        '[%(funcName)s] [%(threadName)s] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    simple_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(simple_formatter)
    root_logger.addHandler(console_handler)

    all_log_file = os.path.join(log_dir, "all.log")
    file_handler = logging.handlers.RotatingFileHandler(
        all_log_file, maxBytes=10*1024*1024, backupCount=5
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(file_handler)

    # Suppress Flask and Werkzeug logs in production
    if os.getenv("FLASK_DEBUG", "false").lower() not in ("true", "1", "yes", "on"):
        logging.getLogger("werkzeug").setLevel(logging.WARNING)
        logging.getLogger("gunicorn").setLevel(logging.WARNING)

    return root_logger


logger = setup_logging()

app = Flask(__name__)

# Leave room for multipart framing; the orchestrator enforces the exact limit
app.config["MAX_CONTENT_LENGTH"] = config.MAX_FILE_SIZE + 1024 * 1024

# API Key authentication configuration
API_KEYS_STR = os.getenv("API_KEYS", "")
API_KEYS = (
    {key.strip() for key in API_KEYS_STR.split(",") if key.strip()}
    if API_KEYS_STR
    else set()
)

# Base URL configuration for full path URLs
BASE_URL = os.getenv("BASE_URL", "").rstrip("/")


def log_startup_info():
    """Log startup information"""
    logger.info("=" * 60)
    logger.info("Media Job Service Starting")
    logger.info("=" * 60)
    logger.info(f"Working directory: {os.getcwd()}")
    logger.info(f"Log level: {os.getenv('LOG_LEVEL', 'INFO')}")
    logger.info(f"Log directory: {os.getenv('LOG_DIR', './logs')}")
    logger.info(f"Flask debug mode: {os.getenv('FLASK_DEBUG', 'false')}")
    logger.info("Configuration loaded:")
    logger.info(f"  UPLOAD_DIR: {config.UPLOAD_DIR}")
    logger.info(f"  MAX_FILE_SIZE: {config.MAX_FILE_SIZE} bytes ({config.MAX_FILE_SIZE/1024/1024:.1f} MB)")
    logger.info(f"  MAX_DURATION_SECONDS: {config.MAX_DURATION_SECONDS}")
    logger.info(f"  ALLOWED_UPLOAD_MIMETYPES: {sorted(config.ALLOWED_UPLOAD_MIMETYPES)}")
    logger.info(f"  SUPPORTED_AUDIO_OUTPUT_FORMATS: {sorted(config.SUPPORTED_AUDIO_OUTPUT_FORMATS)}")
    logger.info(f"  SUPPORTED_VIDEO_OUTPUT_FORMATS: {sorted(config.SUPPORTED_VIDEO_OUTPUT_FORMATS)}")
    logger.info(f"  FFMPEG_BINARY: {config.FFMPEG_BINARY}")
    logger.info(f"  FFPROBE_BINARY: {config.FFPROBE_BINARY}")
    logger.info(f"  CLEAR_ON_STARTUP: {config.CLEAR_ON_STARTUP}")
    logger.info(f"  CLEAR_ON_SHUTDOWN: {config.CLEAR_ON_SHUTDOWN}")
    logger.info(f"  API_KEYS configured: {len(API_KEYS) > 0}")
    logger.info(f"  BASE_URL: {BASE_URL or 'Not set'}")


log_startup_info()


def log_request_info(request_id=None):
    """Log request information with optional request ID"""
    if request_id is None:
        request_id = str(uuid.uuid4())[:8]

    headers = {
        key: value for key, value in request.headers.items()
        if key.lower() != "x-api-key"
    }
    log_data = {
        "request_id": request_id,
        "method": request.method,
        "path": request.path,
        "remote_addr": request.remote_addr,
        "user_agent": request.headers.get("User-Agent", "Unknown"),
        "content_length": request.content_length,
        "content_type": request.content_type,
        "headers": headers,
        "json": request.get_json(silent=True) if request.is_json else None,
    }

    logger.info(f"Request {request_id}: {log_data}")
    return request_id


def log_response_info(request_id, status_code, response_time=None, response_data=None):
    """Log response information"""
    log_data = {
        "request_id": request_id,
        "status_code": status_code,
        "response_time_ms": response_time,
        "response_data": response_data if response_data is not None else {},
    }
    logger.info(f"Response {request_id}: {log_data}")


def log_error(request_id, error, context=None):
    """Log error with context"""
    error_data = {
        "request_id": request_id,
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context or {},
    }

    logger.error(f"Error {request_id}: {error_data}", exc_info=True)


def require_api_key(f):
    """Decorator to require API key authentication"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        # Skip authentication if no API keys are configured
        if not API_KEYS:
            return f(*args, **kwargs)

        api_key = request.headers.get("X-API-Key")

        if not api_key:
            logger.warning("API key required but not provided")
            return error_response("API key required"), 401

        if api_key not in API_KEYS:
            logger.warning("Invalid API key provided")
            return error_response("Invalid API key"), 403

        return f(*args, **kwargs)

    return decorated_function


def create_download_url(relative_url):
    """Prefix BASE_URL to a store URL when configured"""
    if BASE_URL and relative_url.startswith("/"):
        return f"{BASE_URL}{relative_url}"
    return relative_url


def error_response(message):
    return jsonify({"error": message})


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def run_operation(endpoint, operation):
    """Run an orchestrator call, logging it and mapping errors to responses"""
    start_time = time.time()
    request_id = log_request_info()

    try:
        result = operation()
        if "url" in result:
            result["url"] = create_download_url(result["url"])

        response_time = (time.time() - start_time) * 1000
        logger.info(f"Request {request_id}: {endpoint} completed in {response_time:.1f}ms")
        log_response_info(request_id, 200, response_time, result)
        return jsonify(result)

    except MediaJobError as e:
        response_time = (time.time() - start_time) * 1000
        logger.warning(
            f"Request {request_id}: {type(e).__name__} - {e.message} (context: {e.context})"
        )
        log_response_info(request_id, e.status_code, response_time)
        return error_response(e.message), e.status_code
    except HTTPException:
        raise
    except Exception as e:
        response_time = (time.time() - start_time) * 1000
        logger.error(f"Request {request_id}: Processing failed - {str(e)}")
        log_response_info(request_id, 500, response_time)
        log_error(request_id, e, {"endpoint": endpoint})
        return error_response(f"Processing failed: {str(e)}"), 500


# Asset store and job orchestrator
orchestrator = build_orchestrator(config.UPLOAD_DIR)
logger.info(f"Upload directory ensured: {orchestrator.store.root}")


# API Routes


@app.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint"""
    return jsonify({"status": "ok"})


@app.route("/upload", methods=["POST"])
@require_api_key
def upload():
    """Store an uploaded audio or video file under a fresh id"""

    def operation():
        file = request.files.get("file")
        if file is None or not file.filename:
            raise InvalidParameterError("No file provided")
        return orchestrator.ingest_upload(file.stream, file.filename, file.mimetype)

    return run_operation("/upload", operation)


@app.route("/download-social", methods=["POST"])
@require_api_key
def download_social():
    """Download a remote video and transcode it to the requested format"""
    data = _json_body()
    return run_operation(
        "/download-social",
        lambda: orchestrator.ingest_remote(data.get("url"), data.get("format")),
    )


@app.route("/enhance-audio", methods=["POST"])
@require_api_key
def enhance_audio():
    data = _json_body()
    return run_operation(
        "/enhance-audio", lambda: orchestrator.enhance_audio(data.get("fileId"))
    )


@app.route("/split-audio", methods=["POST"])
@require_api_key
def split_audio():
    data = _json_body()
    return run_operation(
        "/split-audio",
        lambda: orchestrator.split_audio(data.get("fileId"), data.get("duration")),
    )


@app.route("/convert", methods=["POST"])
@require_api_key
def convert():
    data = _json_body()
    return run_operation(
        "/convert",
        lambda: orchestrator.convert(data.get("fileId"), data.get("format")),
    )


@app.route("/download-file", methods=["POST"])
@require_api_key
def download_file():
    """Resolve a file id or segment name to its download URL"""
    data = _json_body()
    return run_operation(
        "/download-file",
        lambda: orchestrator.resolve_for_download(data.get("fileId"), data.get("segment")),
    )


@app.route("/clear-files", methods=["POST"])
@require_api_key
def clear_files():
    return run_operation("/clear-files", orchestrator.clear_all)


@app.route(f"{config.URL_PREFIX}/<path:filename>", methods=["GET"])
def serve_upload(filename):
    """Serve stored files read-only"""
    if filename.startswith("."):
        return error_response("File not found"), 404
    logger.info(f"Serving file {filename}")
    return send_from_directory(orchestrator.store.root, filename)


@app.errorhandler(413)
def file_too_large(e):
    return error_response("File too large"), 413


@app.errorhandler(404)
def not_found(e):
    return error_response("Not found"), 404


@app.errorhandler(405)
def method_not_allowed(e):
    return error_response("Method not allowed"), 405


@app.errorhandler(500)
def internal_error(e):
    return error_response("Internal server error"), 500


def clear_store(reason):
    removed = orchestrator.store.purge()
    logger.info(f"Cleared {removed} stored files ({reason})")


if config.CLEAR_ON_STARTUP:
    clear_store("startup")

if config.CLEAR_ON_SHUTDOWN:
    atexit.register(clear_store, "shutdown")

logger.info("=" * 60)
logger.info("Media Job Service Started Successfully")
logger.info("=" * 60)

if __name__ == "__main__":
    FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
    FLASK_PORT = int(os.getenv("FLASK_PORT", "3000"))
    FLASK_DEBUG = os.getenv("FLASK_DEBUG", "false").lower() in (
        "true",
        "1",
        "yes",
        "on",
    )

    logger.info(f"Starting Flask development server on {FLASK_HOST}:{FLASK_PORT}")
    logger.info(f"Debug mode: {FLASK_DEBUG}")

    # Run Flask app (for development only)
    app.run(host=FLASK_HOST, port=FLASK_PORT, debug=FLASK_DEBUG, threaded=True)
