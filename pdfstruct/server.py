"""
HTTP Microservice
=================
Flask-based HTTP API for the PDF structure engine.

Lets an editing surface convert documents over HTTP:
    - Health checks
    - Synchronous conversion of an uploaded PDF, a PDF path or a token dump
    - Replace/append insertion against existing HTML

Endpoints:
    POST   /api/convert       → Convert a PDF (or token pages) to HTML
    GET    /api/health        → Health check
    GET    /api/info          → Engine version info

One engine serves the app and runs one conversion at a time; a request that
arrives while another conversion is running gets 409.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from flask import Flask, jsonify, request
from flask_cors import CORS

from . import __version__
from .engine import ConversionEngine, ConverterConfig
from .errors import ConversionError, ConverterBusyError
from .insertion import InsertMode, insert_fragment

logger = logging.getLogger(__name__)

READ_FAILURE = "Could not read document"

app = Flask(__name__)
CORS(app)


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    app.config.setdefault("MAX_CONTENT_LENGTH", 100 * 1024 * 1024)  # 100MB
    app.config.setdefault("LOG_LEVEL", "INFO")
    app.config.setdefault("SKIP_FAILED_PAGES", False)

    app.config["ENGINE"] = ConversionEngine(ConverterConfig(
        log_level=app.config["LOG_LEVEL"],
        skip_failed_pages=app.config["SKIP_FAILED_PAGES"],
    ))
    return app


def _engine() -> ConversionEngine:
    engine = app.config.get("ENGINE")
    if engine is None:
        engine = create_app().config["ENGINE"]
    return engine


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "pdfstruct",
        "version": __version__,
        "busy": _engine().busy,
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Engine version and capability info."""
    return jsonify({
        "version": __version__,
        "engine": "PyMuPDF",
        "capabilities": [
            "heading_detection",
            "list_detection",
            "table_detection",
            "token_replay",
        ],
        "insert_modes": [m.value for m in InsertMode],
        "supported_formats": ["pdf"],
    })


# ─── Convert Endpoint ─────────────────────────────────────────────────────────


@app.route("/api/convert", methods=["POST"])
def convert():
    """
    Convert a document to an HTML fragment.

    Accepts either:
        - A file upload (multipart/form-data, field "file")
        - A JSON body with file_path pointing to an existing PDF
        - A JSON body with "pages" in the token contract

    Optional "mode" (replace|append) and "existing_html" apply the insertion
    mode to the returned "html"; "fragment" is always the bare conversion.
    """
    engine = _engine()

    if "file" in request.files:
        if not request.files["file"].filename:
            return jsonify({"error": "No file selected"}), 400
        params = request.form
    elif request.is_json:
        params = request.get_json(silent=True)
        if not isinstance(params, dict):
            return jsonify({"error": "JSON body must be an object"}), 400
    else:
        return jsonify({
            "error": "Provide a file upload or a JSON body"
        }), 400

    try:
        mode = InsertMode(params.get("mode", InsertMode.REPLACE.value))
    except ValueError:
        return jsonify({"error": f"Unknown mode: {params.get('mode')}"}), 400

    existing_html = params.get("existing_html", "")
    if not isinstance(existing_html, str):
        return jsonify({"error": "existing_html must be a string"}), 400

    try:
        if "file" in request.files:
            result = _convert_upload(engine, request.files["file"])
        elif "pages" in params:
            result = engine.convert_tokens({"pages": params["pages"]})
        else:
            pdf_path = params.get("file_path")
            if not pdf_path or not os.path.exists(pdf_path):
                return jsonify({"error": f"File not found: {pdf_path}"}), 404
            result = engine.convert(pdf_path)

    except ConverterBusyError:
        logger.warning("Rejected conversion request: engine busy")
        return jsonify({"error": "A conversion is already in progress"}), 409
    except ConversionError as e:
        logger.error(f"Conversion failed: {e}")
        return jsonify({"error": READ_FAILURE}), 422

    data = result.model_dump(mode="json")
    data["fragment"] = result.html
    data["html"] = insert_fragment(existing_html, result.html, mode)
    return jsonify(data)


def _convert_upload(engine: ConversionEngine, upload):
    fd, tmp_path = tempfile.mkstemp(suffix=Path(upload.filename).suffix or ".pdf")
    os.close(fd)
    try:
        upload.save(tmp_path)
        result = engine.convert(tmp_path)
        result.document.name = Path(upload.filename).stem
        result.document.source_pdf = upload.filename
        return result
    finally:
        os.unlink(tmp_path)


def run_server(host: str = "0.0.0.0", port: int = 5000, debug: bool = False):
    """Run the service."""
    create_app()
    logger.info(f"Starting server on {host}:{port}")
    app.run(host=host, port=port, debug=debug, threaded=True)
