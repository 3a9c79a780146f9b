import io
import uuid

from pypdf import PdfReader, PdfWriter
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from app.models.library import ApprovalStatus, Report

PASSWORD = "correct horse battery staple"


def build_pdf(pages=1, pagesize=letter, rotate=0) -> bytes:
    """Render a small text PDF; ``pagesize`` may be a list, one per page."""
    sizes = pagesize if isinstance(pagesize, list) else [pagesize] * pages
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=sizes[0])
    for index, size in enumerate(sizes, start=1):
        c.setPageSize(size)
        c.setFont("Helvetica", 12)
        c.drawString(72, size[1] - 72, f"Report page {index}")
        c.showPage()
    c.save()
    data = buffer.getvalue()
    if not rotate:
        return data
    writer = PdfWriter()
    for page in PdfReader(io.BytesIO(data)).pages:
        writer.add_page(page).rotate(rotate)
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def build_encrypted_pdf() -> bytes:
    writer = PdfWriter(clone_from=PdfReader(io.BytesIO(build_pdf())))
    writer.encrypt("owner-only")
    out = io.BytesIO()
    writer.write(out)
    return out.getvalue()


def create_report(db_session, owner, **kwargs):
    defaults = {
        "title": "Rapport de stage",
        "file_name": "rapport.pdf",
        "approval_status": ApprovalStatus.approved,
        "public_access": True,
        "storage_key": f"reports/{uuid.uuid4().hex}/rapport.pdf",
    }
    defaults.update(kwargs)
    report = Report(owner_id=owner.id, **defaults)
    db_session.add(report)
    db_session.commit()
    db_session.refresh(report)
    return report
