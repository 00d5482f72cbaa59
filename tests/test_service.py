"""
Service-level tests: PDF extraction with PyMuPDF, the click CLI and the
Flask API. PDFs are generated on the fly.
"""

from __future__ import annotations

import io
import json

import fitz
import pytest
from click.testing import CliRunner

from pdfstruct.cli import cli
from pdfstruct.engine import ConversionEngine, ConverterConfig
from pdfstruct.errors import ConverterBusyError, ExtractionError
from pdfstruct.server import create_app
from pdfstruct.token_source import PdfTokenSource


def write_pdf(path, lines):
    """Write a one-page PDF; lines are (y, text, fontsize, fontname)."""
    doc = fitz.open()
    page = doc.new_page()
    for y, text, size, font in lines:
        page.insert_text((72, y), text, fontsize=size, fontname=font)
    doc.save(str(path))
    doc.close()
    return path


REPORT_LINES = [
    (80, "Quarterly Report", 20, "hebo"),
    (120, "First body line.", 11, "helv"),
    (140, "Second body line.", 11, "helv"),
    (160, "- Buy milk", 11, "helv"),
]


def token_dump(*texts):
    """A one-page token contract with one line per text."""
    return {
        "pages": [{
            "items": [
                {"text": text, "transform": [10, 0, 0, 10, 0, 700 - i * 20],
                 "width": len(text) * 5, "font_ref": "F1"}
                for i, text in enumerate(texts)
            ],
            "styles": {"F1": {"family": "Helvetica"}},
        }]
    }


@pytest.fixture
def report_pdf(tmp_path):
    return write_pdf(tmp_path / "report.pdf", REPORT_LINES)


@pytest.fixture
def broken_pdf(tmp_path):
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"this is not a pdf")
    return path


# ═══════════════════════════════════════════════════════════════════════════════
# PDF TOKEN SOURCE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPdfTokenSource:
    """Test token extraction from real PDF files."""

    def test_tokens_use_bottom_up_coordinates(self, tmp_path):
        pdf = write_pdf(tmp_path / "hello.pdf", [(72, "Hello", 11, "helv")])
        pages = list(PdfTokenSource().iter_pages(str(pdf)))

        assert len(pages) == 1
        token = pages[0].tokens[0]
        assert token.text == "Hello"
        assert token.x == pytest.approx(72, abs=1)
        assert token.y == pytest.approx(842 - 72, abs=1)
        assert token.height == pytest.approx(11, abs=0.5)
        assert token.width > 0

    def test_style_table(self, report_pdf):
        page = next(PdfTokenSource().iter_pages(str(report_pdf)))
        title = page.tokens[0]

        assert page.styles[title.font_ref].is_bold
        body = next(t for t in page.tokens if t.text == "First body line.")
        assert not page.styles[body.font_ref].is_bold

    def test_page_range(self, tmp_path):
        doc = fitz.open()
        for i in range(3):
            doc.new_page().insert_text((72, 72), f"Page {i + 1}", fontsize=11)
        path = tmp_path / "three.pdf"
        doc.save(str(path))
        doc.close()

        pages = list(PdfTokenSource(page_range=(2, 3)).iter_pages(str(path)))
        assert [p.page_number for p in pages] == [2, 3]
        assert pages[0].tokens[0].text == "Page 2"

    def test_progress_callback(self, report_pdf):
        calls = []
        list(PdfTokenSource().iter_pages(
            str(report_pdf), progress_callback=lambda c, t: calls.append((c, t))
        ))
        assert calls == [(1, 1)]

    def test_unreadable_file(self, broken_pdf):
        with pytest.raises(ExtractionError):
            list(PdfTokenSource().iter_pages(str(broken_pdf)))


class TestPdfConversion:
    """Test the engine against generated PDFs."""

    def test_end_to_end(self, report_pdf):
        engine = ConversionEngine(ConverterConfig(log_level="ERROR"))
        result = engine.convert(str(report_pdf))

        assert result.html.startswith("<h2><strong>Quarterly Report</strong></h2>")
        assert "<p>First body line.</p><p>Second body line.</p>" in result.html
        assert "<ul><li>Buy milk</li></ul>" in result.html
        assert result.document.source_pdf == "report.pdf"
        assert result.document.total_pages == 1
        assert len(result.document.file_hash) == 64

    def test_unreadable_file_fails_whole_conversion(self, broken_pdf):
        engine = ConversionEngine(ConverterConfig(log_level="ERROR"))
        with pytest.raises(ExtractionError):
            engine.convert(str(broken_pdf))
        assert not engine.busy

    def test_busy_engine_rejects_before_reading(self, broken_pdf):
        engine = ConversionEngine(ConverterConfig(log_level="ERROR"))
        engine._busy.acquire()
        try:
            # An unreadable file still reports busy: the PDF is never opened
            with pytest.raises(ConverterBusyError):
                engine.convert(str(broken_pdf))
            with pytest.raises(ConverterBusyError):
                engine.convert_tokens({"pages": "nope"})
        finally:
            engine._busy.release()


# ═══════════════════════════════════════════════════════════════════════════════
# CLI TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCli:
    """Test the click command-line interface."""

    @pytest.fixture
    def dump_file(self, tmp_path):
        path = tmp_path / "tokens.json"
        path.write_text(json.dumps(token_dump("Hello")), encoding="utf-8")
        return path

    def test_replay_to_file(self, dump_file, tmp_path):
        out = tmp_path / "out.html"
        result = CliRunner().invoke(
            cli, ["replay", str(dump_file), "-o", str(out), "--log-level", "ERROR"]
        )
        assert result.exit_code == 0, result.output
        assert out.read_text(encoding="utf-8") == "<p>Hello</p>"

    def test_replay_json_output(self, dump_file):
        result = CliRunner().invoke(cli, ["replay", str(dump_file), "--json-output"])
        assert result.exit_code == 0, result.output

        data = json.loads(result.output)
        assert data["html"] == "<p>Hello</p>"
        assert data["report"]["paragraphs"] == 1

    def test_append_into_existing(self, dump_file, tmp_path):
        existing = tmp_path / "doc.html"
        existing.write_text("<p>Old</p>", encoding="utf-8")

        result = CliRunner().invoke(cli, [
            "replay", str(dump_file),
            "--into", str(existing), "--mode", "append", "--log-level", "ERROR",
        ])
        assert result.exit_code == 0, result.output
        assert existing.read_text(encoding="utf-8") == "<p>Old</p><br><p>Hello</p>"

    def test_convert_pdf(self, report_pdf):
        result = CliRunner().invoke(cli, ["convert", str(report_pdf), "--json-output"])
        assert result.exit_code == 0, result.output

        data = json.loads(result.output)
        assert data["report"]["headings"] == 1
        assert data["report"]["list_items"] == 1

    def test_convert_unreadable_pdf(self, broken_pdf):
        result = CliRunner().invoke(
            cli, ["convert", str(broken_pdf), "--log-level", "ERROR"]
        )
        assert result.exit_code == 1
        assert "Could not read document" in result.output

    def test_save_tokens(self, report_pdf, tmp_path):
        out_dir = tmp_path / "out"
        result = CliRunner().invoke(cli, [
            "convert", str(report_pdf), "--save-tokens", str(out_dir), "--json-output",
        ])
        assert result.exit_code == 0, result.output
        assert (out_dir / "report_tokens.json").exists()
        assert (out_dir / "report.html").exists()

    def test_info(self, report_pdf):
        result = CliRunner().invoke(cli, ["info", str(report_pdf)])
        assert result.exit_code == 0, result.output
        assert "PDF Information" in result.output


# ═══════════════════════════════════════════════════════════════════════════════
# HTTP API TESTS
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def app():
    return create_app({"TESTING": True, "LOG_LEVEL": "ERROR"})


@pytest.fixture
def client(app):
    return app.test_client()


class TestApi:
    """Test the Flask endpoints."""

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["busy"] is False

    def test_info(self, client):
        data = client.get("/api/info").get_json()
        assert data["insert_modes"] == ["replace", "append"]

    def test_convert_tokens(self, client):
        response = client.post("/api/convert", json=token_dump("Hello", "• Item"))
        assert response.status_code == 200

        data = response.get_json()
        assert data["fragment"] == "<p>Hello</p><ul><li>Item</li></ul>"
        assert data["html"] == data["fragment"]
        assert data["report"]["list_items"] == 1

    def test_append_mode(self, client):
        body = token_dump("Hello")
        body.update(mode="append", existing_html="<p>Old</p>")
        data = client.post("/api/convert", json=body).get_json()
        assert data["html"] == "<p>Old</p><br><p>Hello</p>"

    def test_rejects_while_busy(self, app, client):
        engine = app.config["ENGINE"]
        engine._busy.acquire()
        try:
            response = client.post("/api/convert", json=token_dump("Hello"))
            assert response.status_code == 409
        finally:
            engine._busy.release()

    def test_malformed_tokens(self, client):
        response = client.post("/api/convert", json={"pages": "nope"})
        assert response.status_code == 422
        assert response.get_json()["error"] == "Could not read document"

    def test_unknown_mode(self, client):
        body = token_dump("Hello")
        body["mode"] = "prepend"
        assert client.post("/api/convert", json=body).status_code == 400

    def test_existing_html_must_be_text(self, client):
        body = token_dump("Hello")
        body.update(mode="append", existing_html=42)
        response = client.post("/api/convert", json=body)
        assert response.status_code == 400
        assert "existing_html" in response.get_json()["error"]

    def test_unpaired_surrogate_in_tokens(self, client):
        response = client.post(
            "/api/convert",
            data='{"pages": [{"items": [{"text": "caf\\ud800e", '
                 '"transform": [10, 0, 0, 10, 0, 700], "width": 20}]}]}',
            content_type="application/json",
        )
        assert response.status_code == 200
        assert response.get_json()["html"] == "<p>cafe</p>"

    def test_missing_file_path(self, client, tmp_path):
        response = client.post(
            "/api/convert", json={"file_path": str(tmp_path / "nope.pdf")}
        )
        assert response.status_code == 404

    def test_no_body(self, client):
        assert client.post("/api/convert").status_code == 400

    def test_upload(self, client, report_pdf):
        response = client.post(
            "/api/convert",
            data={"file": (io.BytesIO(report_pdf.read_bytes()), "report.pdf")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 200
        data = response.get_json()
        assert data["document"]["source_pdf"] == "report.pdf"
        assert "<h2>" in data["html"]

    def test_upload_unreadable(self, client):
        response = client.post(
            "/api/convert",
            data={"file": (io.BytesIO(b"garbage"), "broken.pdf")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 422
