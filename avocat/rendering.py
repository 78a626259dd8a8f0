import io
import logging
import re
from datetime import date
from xml.sax.saxutils import escape

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from .content import SAMPLE, STUDY_MATERIAL, TEMPLATE

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

HEADER_LABELS = {
    TEMPLATE: "PLANTILLA",
    SAMPLE: "EJEMPLO",
    STUDY_MATERIAL: "MATERIAL DE ESTUDIO",
}

MONTHS_ES = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]

NUMBERED_HEADING = re.compile(r"^(\d+|[IVXLC]+)\.\s+[A-ZÁÉÍÓÚÑ]")


class RenderError(Exception):
    pass


def _spanish_date(day):
    return f"{day.day} de {MONTHS_ES[day.month - 1]} de {day.year}"


def _is_heading(line):
    if NUMBERED_HEADING.match(line) and len(line) < 100:
        return True
    return 5 < len(line) < 100 and line == line.upper() and any(c.isalpha() for c in line)


def _is_signature_line(line):
    lowered = line.lower()
    return any(marker in lowered for marker in ("firma:", "fecha:", "signature:", "date:")) or "______" in line


def render_pdf(content, title, area, jurisdiction, variant):
    """Render generated text to PDF bytes using ReportLab."""
    buffer = io.BytesIO()
    try:
        doc = SimpleDocTemplate(buffer, pagesize=A4,
                                rightMargin=72, leftMargin=72,
                                topMargin=72, bottomMargin=48,
                                title=title)
        styles = getSampleStyleSheet()

        label_style = ParagraphStyle(
            'DocLabel', parent=styles['h1'], fontSize=16, alignment=TA_CENTER,
            spaceAfter=6, textColor=colors.HexColor('#1a237e')
        )
        title_style = ParagraphStyle(
            'DocTitle', parent=styles['h2'], fontSize=13, alignment=TA_CENTER,
            spaceAfter=6, textColor=colors.HexColor('#283593')
        )
        meta_style = ParagraphStyle(
            'DocMeta', parent=styles['Normal'], fontSize=9, alignment=TA_CENTER,
            textColor=colors.darkgrey
        )
        normal_style = ParagraphStyle(
            'BodyText', parent=styles['Normal'], fontSize=10, alignment=TA_JUSTIFY,
            leading=14, spaceBefore=4, spaceAfter=4, firstLineIndent=18
        )
        heading_style = ParagraphStyle(
            'Heading1', parent=styles['h2'], fontSize=12, alignment=TA_LEFT,
            spaceBefore=12, spaceAfter=6, textColor=colors.HexColor('#1a237e'),
            fontName='Helvetica-Bold', keepWithNext=1
        )
        bullet_style = ParagraphStyle(
            'Bullet', parent=normal_style, firstLineIndent=0, leftIndent=36,
            spaceBefore=2, spaceAfter=2
        )
        signature_style = ParagraphStyle(
            'Signature', parent=styles['Normal'], fontSize=10, alignment=TA_LEFT,
            leading=16, spaceBefore=15, spaceAfter=15
        )

        story = [
            Paragraph(HEADER_LABELS.get(variant, ""), label_style),
            Paragraph(escape(title), title_style),
            Paragraph(escape(f"Área: {area} · Jurisdicción: {jurisdiction}"), meta_style),
            Spacer(1, 20),
        ]

        for line in content.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            # Markdown markers from the model are dropped, the structure is kept
            text = stripped.replace("**", "").lstrip("#").strip()
            if not text:
                continue
            if stripped.startswith("#") or _is_heading(text):
                story.append(Paragraph(escape(text), heading_style))
            elif stripped.startswith(('-', '*', '•', '+')):
                story.append(Paragraph(escape(f"• {text.lstrip('-*•+ ').strip()}"), bullet_style))
            elif _is_signature_line(text):
                story.append(Paragraph(escape(text), signature_style))
            else:
                story.append(Paragraph(escape(text), normal_style))

        def add_page_number(canvas, doc):
            canvas.saveState()
            canvas.setFont('Helvetica', 8)
            canvas.setFillColor(colors.grey)
            canvas.drawCentredString(A4[0] / 2.0, 30, f"Página {canvas.getPageNumber()}")
            canvas.restoreState()

        doc.build(story, onFirstPage=add_page_number, onLaterPages=add_page_number)
    except Exception as e:
        logger.error(f"Failed to render PDF '{title}': {e}")
        raise RenderError(f"PDF Generation Error: {e}") from e
    return buffer.getvalue()


def render_docx(content, title, area, jurisdiction, variant, generated_on=None):
    """Render generated text to a Word document."""
    generated_on = generated_on or date.today()
    try:
        document = Document()

        heading = document.add_heading(HEADER_LABELS.get(variant, ""), level=0)
        heading.alignment = WD_ALIGN_PARAGRAPH.CENTER
        heading = document.add_heading(title, level=1)
        heading.alignment = WD_ALIGN_PARAGRAPH.CENTER

        for text in (f"Área: {area}", f"Jurisdicción: {jurisdiction}"):
            paragraph = document.add_paragraph()
            paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
            paragraph.add_run(text).font.size = Pt(10)

        paragraph = document.add_paragraph()
        paragraph.alignment = WD_ALIGN_PARAGRAPH.RIGHT
        run = paragraph.add_run(f"Generado el: {_spanish_date(generated_on)}")
        run.font.size = Pt(9)
        run.italic = True

        for line in content.splitlines():
            text = line.strip().replace("**", "").lstrip("#").strip()
            if not text:
                continue
            if line.strip().startswith("#") or _is_heading(text):
                document.add_heading(text, level=2)
            else:
                document.add_paragraph().add_run(text).font.size = Pt(11)

        buffer = io.BytesIO()
        document.save(buffer)
    except Exception as e:
        logger.error(f"Failed to render Word document '{title}': {e}")
        raise RenderError(f"Word Generation Error: {e}") from e
    return buffer.getvalue()


class Renderer:
    """The two output formats behind one seam, so they can be swapped in tests."""

    def pdf(self, content, title, area, jurisdiction, variant):
        return render_pdf(content, title, area, jurisdiction, variant)

    def docx(self, content, title, area, jurisdiction, variant):
        return render_docx(content, title, area, jurisdiction, variant)
