import io
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from pypdf import PdfReader

from app.errors import CorruptSource
from app.services import watermark
from tests.factories import build_encrypted_pdf, build_pdf

NOW = datetime(2026, 3, 14, 9, 26, 53, tzinfo=timezone.utc)


@pytest.fixture()
def viewer():
    return SimpleNamespace(full_name="Alice Martin", email="alice@esprim.tn")


@pytest.fixture()
def session():
    return SimpleNamespace(session_id="sess-4f2a9c")


def _read(data: bytes) -> PdfReader:
    return PdfReader(io.BytesIO(data))


class TestBuildMarks:
    def test_primary_mark(self, viewer, session):
        marks = watermark.build_marks(viewer, session, now=NOW, timestamp_format="%Y")
        assert marks.primary == "Alice Martin • alice@esprim.tn • 2026"

    def test_forensic_mark(self, viewer, session):
        marks = watermark.build_marks(viewer, session, now=NOW, issuer="ESPRIM")
        assert marks.forensic == "ESPRIM • SESSION sess-4f2a9c"
        assert marks.session_id == "sess-4f2a9c"

    def test_default_issuer(self, viewer, session):
        marks = watermark.build_marks(viewer, session, now=NOW)
        assert marks.forensic.startswith("ESPRIM - DOCUMENT PROTEGE")

    def test_missing_name_falls_back(self, session):
        viewer = SimpleNamespace(full_name="", email="x@esprim.tn")
        marks = watermark.build_marks(viewer, session, now=NOW)
        assert marks.primary.startswith("Utilisateur")

    def test_unencodable_characters_are_replaced(self, session):
        viewer = SimpleNamespace(full_name="Zoë 李", email="z@esprim.tn")
        marks = watermark.build_marks(viewer, session, now=NOW)
        assert marks.primary.startswith("Zoë ?")


class TestStamp:
    def test_page_count_preserved(self, pdf_bytes, viewer, session):
        stamped = watermark.stamp(pdf_bytes, viewer, session, now=NOW)
        assert len(_read(stamped).pages) == 3

    def test_every_page_carries_marks(self, pdf_bytes, viewer, session):
        stamped = watermark.stamp(pdf_bytes, viewer, session, now=NOW)
        for index, page in enumerate(_read(stamped).pages, start=1):
            text = page.extract_text()
            assert f"Report page {index}" in text
            assert "alice@esprim.tn" in text
            assert "sess-4f2a9c" in text

    def test_session_recorded_in_metadata(self, pdf_bytes, viewer, session):
        stamped = watermark.stamp(pdf_bytes, viewer, session, now=NOW)
        metadata = _read(stamped).metadata
        assert metadata[watermark.SESSION_METADATA_KEY] == "sess-4f2a9c"

    def test_mixed_page_sizes(self, mixed_pdf_bytes, viewer, session):
        source = _read(mixed_pdf_bytes)
        stamped = _read(watermark.stamp(mixed_pdf_bytes, viewer, session, now=NOW))
        assert len(stamped.pages) == len(source.pages)
        for original, page in zip(source.pages, stamped.pages):
            assert float(page.mediabox.width) == pytest.approx(
                float(original.mediabox.width)
            )
            assert float(page.mediabox.height) == pytest.approx(
                float(original.mediabox.height)
            )
            assert "alice@esprim.tn" in page.extract_text()

    def test_rotated_pages_are_normalized(self, viewer, session):
        source = build_pdf(pages=2, rotate=90)
        stamped = _read(watermark.stamp(source, viewer, session, now=NOW))
        for page in stamped.pages:
            assert page.rotation == 0
            assert float(page.mediabox.width) == pytest.approx(792, abs=0.5)
            assert float(page.mediabox.height) == pytest.approx(612, abs=0.5)

    def test_source_bytes_untouched(self, pdf_bytes, viewer, session):
        original = bytes(pdf_bytes)
        watermark.stamp(pdf_bytes, viewer, session, now=NOW)
        assert pdf_bytes == original

    def test_sessions_produce_distinct_marks(self, pdf_bytes, viewer):
        first = watermark.stamp(
            pdf_bytes, viewer, SimpleNamespace(session_id="one"), now=NOW
        )
        second = watermark.stamp(
            pdf_bytes, viewer, SimpleNamespace(session_id="two"), now=NOW
        )
        assert first != second
        assert "one" in _read(first).pages[0].extract_text()
        assert "two" in _read(second).pages[0].extract_text()

    @pytest.mark.parametrize("data", [b"", b"not a pdf", b"%PDF-1.4\n%%EOF"])
    def test_corrupt_source(self, data, viewer, session):
        with pytest.raises(CorruptSource):
            watermark.stamp(data, viewer, session, now=NOW)

    def test_encrypted_source(self, viewer, session):
        with pytest.raises(CorruptSource):
            watermark.stamp(build_encrypted_pdf(), viewer, session, now=NOW)


class TestRenderOverlay:
    def test_overlay_matches_page_size(self, viewer, session):
        marks = watermark.build_marks(viewer, session, now=NOW)
        page = watermark.render_overlay(595.0, 842.0, marks)
        assert float(page.mediabox.width) == pytest.approx(595.0)
        assert float(page.mediabox.height) == pytest.approx(842.0)

    def test_forensic_font_is_bounded(self):
        small = watermark._forensic_font_size("x" * 400, 200, 200)
        large = watermark._forensic_font_size("x", 2000, 2000)
        assert small == watermark.FORENSIC_MIN_FONT_SIZE
        assert large == watermark.FORENSIC_MAX_FONT_SIZE
