"""
PDF Generator Module

Renders the final PDF from the document plan using ReportLab.

Design Decisions:
=================

1. Two-Pass Rendering:
   - First pass: lay out the story and count pages
   - Second pass: same story, footer with "Page X of Y"
   - Footers are drawn on the canvas and never change layout, so both
     passes paginate identically

2. Determinism Enforcement:
   - rl_config.invariant pins document ids and metadata dates
   - The only time shown is the stored generation_timestamp
   - Same document plan + timestamp = identical bytes

3. Signature Blocks:
   - SignatureBlock is a single flowable and cannot split
   - Signature clauses are wrapped in KeepTogether so a heading is never
     stranded away from its blocks

4. Typography:
   - Times family on US Letter with one inch margins
"""

import io
import hashlib
from typing import List, Dict, Any, Optional, Tuple
from datetime import datetime

from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    SimpleDocTemplate, Paragraph, Spacer, PageBreak, Flowable, KeepTogether
)
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab import rl_config

from poa_builder.clause_logic import SIGNATURE_CLAUSES
from poa_builder.clause_renderer import DocumentPlanItem, ContentBlock
from poa_builder.utils import escape_text, format_timestamp, utcnow

# Enable invariant mode for deterministic PDF generation
rl_config.invariant = 1


# Page dimensions
PAGE_WIDTH, PAGE_HEIGHT = LETTER
MARGIN_LEFT = inch
MARGIN_RIGHT = inch
MARGIN_TOP = inch
MARGIN_BOTTOM = inch
FOOTER_Y = 0.5 * inch

PDF_AUTHOR = 'POA Builder'

_SIGNATURE_CLAUSE_IDS = frozenset(c.value for c in SIGNATURE_CLAUSES)


class SignatureBlock(Flowable):
    """Signature block: a label followed by ruled, optionally prefilled lines."""

    def __init__(self, content: Dict[str, Any], width: float = 400):
        super().__init__()
        self.content = content
        self.block_width = width
        self.line_height = 22

    def _lines(self) -> List[Tuple[str, str]]:
        return [tuple(line) for line in self.content.get('lines', [])]

    def wrap(self, availWidth, availHeight):
        self.block_width = min(self.block_width, availWidth)
        self.height = (len(self._lines()) + 1) * self.line_height + 12
        return (self.block_width, self.height)

    def split(self, availWidth, availHeight):
        # Never split a signature block
        return []

    def draw(self):
        canvas = self.canv
        y = self.height - self.line_height

        label = self.content.get('label', '')
        if label:
            canvas.setFont('Times-Bold', 11)
            canvas.drawString(0, y, label)
        y -= self.line_height

        for line_label, value in self._lines():
            canvas.setFont('Times-Roman', 10)
            canvas.drawString(0, y, f'{line_label}:')
            if value:
                canvas.drawString(110, y + 1, str(value))
            canvas.line(105, y - 2, self.block_width, y - 2)
            y -= self.line_height


def create_styles() -> Dict[str, ParagraphStyle]:
    """Create paragraph styles for the instrument."""
    styles = getSampleStyleSheet()

    custom_styles = {
        'title': ParagraphStyle(
            'POATitle',
            parent=styles['Heading1'],
            fontSize=16,
            leading=22,
            alignment=TA_CENTER,
            spaceAfter=28,
            fontName='Times-Bold',
        ),
        'subtitle': ParagraphStyle(
            'POASubtitle',
            parent=styles['Normal'],
            fontSize=11,
            leading=15,
            alignment=TA_CENTER,
            spaceAfter=6,
            fontName='Times-Roman',
        ),
        'clause_heading': ParagraphStyle(
            'ClauseHeading',
            parent=styles['Heading2'],
            fontSize=12,
            leading=18,
            spaceBefore=18,
            spaceAfter=10,
            fontName='Times-Bold',
            textColor=colors.HexColor('#1a1a1a'),
        ),
        'normal': ParagraphStyle(
            'POANormal',
            parent=styles['Normal'],
            fontSize=11,
            leading=16,
            alignment=TA_JUSTIFY,
            spaceAfter=10,
            fontName='Times-Roman',
        ),
        'bullet_item': ParagraphStyle(
            'BulletItem',
            parent=styles['Normal'],
            fontSize=11,
            leading=16,
            leftIndent=36,
            firstLineIndent=-14,
            spaceAfter=6,
            fontName='Times-Roman',
        ),
        'numbered_item': ParagraphStyle(
            'NumberedItem',
            parent=styles['Normal'],
            fontSize=11,
            leading=16,
            leftIndent=36,
            firstLineIndent=-18,
            spaceAfter=6,
            fontName='Times-Roman',
        ),
    }

    return custom_styles


def _render_content_block(block: ContentBlock, styles: Dict[str, ParagraphStyle]):
    """
    Render a content block to a ReportLab element.

    Args:
        block: The content block
        styles: Paragraph styles

    Returns:
        ReportLab flowable or None
    """
    if block.type == 'heading1':
        style = styles.get(block.style, styles['title'])
        return Paragraph(escape_text(block.content), style)

    elif block.type == 'paragraph':
        return Paragraph(escape_text(block.content), styles['normal'])

    elif block.type == 'bullet_item':
        style = styles['bullet_item']
        if block.indent_level > 1:
            style = ParagraphStyle(f'BulletItem{block.indent_level}', parent=style,
                                   leftIndent=style.leftIndent + 20 * (block.indent_level - 1))
        return Paragraph('• ' + escape_text(block.content), style)

    elif block.type == 'numbered_item':
        return Paragraph(escape_text(block.content), styles['numbered_item'])

    elif block.type == 'initials_item':
        return Paragraph('_______ (initials) ' + escape_text(block.content), styles['numbered_item'])

    elif block.type == 'signature_block':
        return SignatureBlock(block.content)

    elif block.type == 'page_break':
        return PageBreak()

    return None


def _render_clause_to_elements(item: DocumentPlanItem, styles: Dict[str, ParagraphStyle]) -> List:
    elements = []

    if item.numbering_level > 0:
        elements.append(Paragraph(escape_text(f'{item.clause_number}. {item.title}'),
                                  styles['clause_heading']))

    for block in item.content_blocks:
        element = _render_content_block(block, styles)
        if element is not None:
            elements.append(element)

    if item.id in _SIGNATURE_CLAUSE_IDS:
        return [KeepTogether(elements), Spacer(1, 12)]

    elements.append(Spacer(1, 8))
    return elements


def _build_story(document_plan: List[DocumentPlanItem]) -> List:
    styles = create_styles()
    story = []
    for item in document_plan:
        story.extend(_render_clause_to_elements(item, styles))
    return story


def _new_document(buffer: io.BytesIO, title: str) -> SimpleDocTemplate:
    return SimpleDocTemplate(
        buffer,
        pagesize=LETTER,
        leftMargin=MARGIN_LEFT,
        rightMargin=MARGIN_RIGHT,
        topMargin=MARGIN_TOP,
        bottomMargin=MARGIN_BOTTOM,
        title=title,
        author=PDF_AUTHOR,
        creator=PDF_AUTHOR,
    )


def _create_footer_callback(generated_text: str, total_pages: int):
    """
    Footer callback with the generation timestamp and "Page X of Y".

    Args:
        generated_text: Formatted generation timestamp
        total_pages: Page count from the first pass
    """
    def footer(canvas, doc):
        canvas.saveState()
        canvas.setFont('Times-Roman', 8)
        canvas.setFillColor(colors.HexColor('#666666'))
        canvas.drawString(MARGIN_LEFT, FOOTER_Y, f'Generated: {generated_text}')
        canvas.drawRightString(PAGE_WIDTH - MARGIN_RIGHT, FOOTER_Y, f'Page {doc.page} of {total_pages}')
        canvas.restoreState()

    return footer


def count_pages(document_plan: List[DocumentPlanItem], title: str = 'Power of Attorney') -> int:
    """First pass: lay out the plan and return the resulting page count."""
    pages = []

    def record_page(canvas, doc):
        pages.append(doc.page)

    buffer = io.BytesIO()
    doc = _new_document(buffer, title)
    doc.build(_build_story(document_plan), onFirstPage=record_page, onLaterPages=record_page)
    buffer.close()
    return max(pages) if pages else 0


def generate_pdf_with_footer(document_plan: List[DocumentPlanItem],
                             generation_timestamp: Optional[datetime] = None,
                             title: str = 'Power of Attorney',
                             tz_name: str = 'UTC') -> Tuple[bytes, str, int]:
    """
    Generate the final PDF with footer.

    Args:
        document_plan: The rendered document plan
        generation_timestamp: Stored timestamp for determinism
        title: PDF metadata title
        tz_name: Timezone used to display the timestamp

    Returns:
        Tuple of (PDF bytes, SHA256 hash, page count)
    """
    if generation_timestamp is None:
        generation_timestamp = utcnow()

    total_pages = count_pages(document_plan, title)

    buffer = io.BytesIO()
    doc = _new_document(buffer, title)
    footer = _create_footer_callback(format_timestamp(generation_timestamp, tz_name), total_pages)
    doc.build(_build_story(document_plan), onFirstPage=footer, onLaterPages=footer)

    pdf_bytes = buffer.getvalue()
    buffer.close()

    return pdf_bytes, hashlib.sha256(pdf_bytes).hexdigest(), total_pages


def verify_pdf_integrity(pdf_bytes: bytes, expected_hash: str) -> bool:
    """
    Verify PDF integrity by computing hash.

    Args:
        pdf_bytes: PDF content
        expected_hash: Expected SHA256 hash

    Returns:
        True if integrity verified
    """
    actual_hash = hashlib.sha256(pdf_bytes).hexdigest()
    return actual_hash == expected_hash
