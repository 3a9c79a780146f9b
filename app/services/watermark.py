"""PDF watermark compositor.

Stamps every page of a stored PDF with two marks tied to one viewing
session:

- a primary mark (viewer name, email, local timestamp) near the top of the
  page, rotated and semi-transparent, for immediate attribution;
- a forensic mark (issuer, session id) laid diagonally across the page
  centre at very low opacity, for tracing copies after the fact.

The transform is bytes in, bytes out. The source reader is private to the
call and the result is serialized in full before it is returned, so a
failure never yields a partially stamped document. Output must not be
cached: the marks are specific to one session.
"""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from pypdf import PageObject, PdfReader, PdfWriter, Transformation
from pypdf.errors import PdfReadError, PdfStreamError, PyPdfError
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from app.config import settings
from app.errors import CorruptSource

logger = logging.getLogger(__name__)

FONT_NAME = "Helvetica-Bold"
SEPARATOR = " • "

PRIMARY_FONT_SIZE = 14
PRIMARY_ANGLE = -35
PRIMARY_OPACITY = 0.4
PRIMARY_RGB = (0.3, 0.3, 0.3)
PRIMARY_TOP_OFFSET = 100
PRIMARY_LEFT_OFFSET = 60

FORENSIC_MAX_FONT_SIZE = 40
FORENSIC_MIN_FONT_SIZE = 8
FORENSIC_OPACITY = 0.08
FORENSIC_RGB = (0.85, 0.0, 0.0)

SESSION_METADATA_KEY = "/WatermarkSession"


@dataclass(frozen=True)
class WatermarkMarks:
    primary: str
    forensic: str
    session_id: str


def _winansi(text: str) -> str:
    # standard Type 1 fonts only cover the WinAnsi repertoire
    return text.encode("cp1252", "replace").decode("cp1252")


def build_marks(
    principal,
    session,
    now: datetime | None = None,
    issuer: str | None = None,
    timestamp_format: str | None = None,
) -> WatermarkMarks:
    now = now or datetime.now(timezone.utc)
    local_time = now.astimezone().strftime(
        timestamp_format or settings.watermark_timestamp_format
    )
    name = getattr(principal, "full_name", None) or "Utilisateur"
    primary = SEPARATOR.join([name, principal.email, local_time])
    forensic = SEPARATOR.join(
        [issuer or settings.watermark_issuer, f"SESSION {session.session_id}"]
    )
    return WatermarkMarks(
        primary=_winansi(primary),
        forensic=_winansi(forensic),
        session_id=str(session.session_id),
    )


def _forensic_font_size(text: str, width: float, height: float) -> float:
    diagonal = math.hypot(width, height)
    natural = stringWidth(text, FONT_NAME, 1) or 1
    size = (diagonal * 0.8) / natural
    return max(FORENSIC_MIN_FONT_SIZE, min(FORENSIC_MAX_FONT_SIZE, size))


def render_overlay(width: float, height: float, marks: WatermarkMarks) -> PageObject:
    """Draw both marks on a blank page of the given size."""
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(width, height), invariant=1)

    c.saveState()
    c.setFillColorRGB(*PRIMARY_RGB)
    c.setFillAlpha(PRIMARY_OPACITY)
    c.setFont(FONT_NAME, PRIMARY_FONT_SIZE)
    c.translate(PRIMARY_LEFT_OFFSET, max(height - PRIMARY_TOP_OFFSET, 0))
    c.rotate(PRIMARY_ANGLE)
    c.drawString(0, 0, marks.primary)
    c.restoreState()

    font_size = _forensic_font_size(marks.forensic, width, height)
    c.saveState()
    c.setFillColorRGB(*FORENSIC_RGB)
    c.setFillAlpha(FORENSIC_OPACITY)
    c.setFont(FONT_NAME, font_size)
    c.translate(width / 2, height / 2)
    c.rotate(math.degrees(math.atan2(height, width)))
    c.drawCentredString(0, -font_size / 3, marks.forensic)
    c.restoreState()

    c.showPage()
    c.save()
    return PdfReader(io.BytesIO(buffer.getvalue())).pages[0]


def _open_source(document_bytes: bytes) -> PdfReader:
    if not document_bytes:
        raise CorruptSource(log_detail="empty document")
    try:
        reader = PdfReader(io.BytesIO(document_bytes))
        if reader.is_encrypted:
            raise CorruptSource(log_detail="encrypted document")
        page_count = len(reader.pages)
    except CorruptSource:
        raise
    except (PdfReadError, PdfStreamError, PyPdfError) as e:
        raise CorruptSource(log_detail=f"unreadable document: {e}")
    except Exception as e:
        raise CorruptSource(log_detail=f"unexpected parse error: {type(e).__name__}")
    if page_count == 0:
        raise CorruptSource(log_detail="document has no pages")
    return reader


def stamp(
    document_bytes: bytes,
    principal,
    session,
    now: datetime | None = None,
    issuer: str | None = None,
) -> bytes:
    """Return a new PDF with every page carrying the session's marks.

    Page count and order are preserved. Raises :class:`CorruptSource` when
    the source cannot be parsed or rewritten.
    """
    reader = _open_source(document_bytes)
    marks = build_marks(principal, session, now=now, issuer=issuer)
    overlays: dict[tuple[float, float], PageObject] = {}

    try:
        writer = PdfWriter(clone_from=reader)
        for page in writer.pages:
            if page.rotation:
                page.transfer_rotation_to_content()
            box = page.mediabox
            width, height = float(box.width), float(box.height)
            key = (round(width, 2), round(height, 2))
            overlay = overlays.get(key)
            if overlay is None:
                overlay = render_overlay(width, height, marks)
                overlays[key] = overlay
            page.merge_transformed_page(
                overlay, Transformation().translate(float(box.left), float(box.bottom))
            )
            page.compress_content_streams()
        writer.add_metadata({SESSION_METADATA_KEY: marks.session_id})

        output = io.BytesIO()
        writer.write(output)
        stamped = output.getvalue()
    except CorruptSource:
        raise
    except Exception as e:
        logger.exception("Failed to stamp document for session %s", marks.session_id)
        raise CorruptSource(log_detail=f"stamping failed: {type(e).__name__}")

    logger.debug(
        "Stamped %d page(s) for session %s", len(writer.pages), marks.session_id
    )
    return stamped
