"""
PDF Generation Tests

Tests for PDF generation:
- Page count and footer pass
- Signature blocks are not split
- Valid PDF output
"""

import unittest
from datetime import datetime

from poa_builder.clause_renderer import ContentBlock, DocumentPlanItem, render_document_plan
from poa_builder.pdf_generator import (
    SignatureBlock, count_pages, create_styles, generate_pdf_with_footer, verify_pdf_integrity
)
from poa_builder.validation import validate_payload
from poa_builder.sample_payloads import make_durable_payload, make_healthcare_payload


GENERATED_AT = datetime(2026, 3, 1, 14, 30, 0)


def build_plan(payload):
    result = validate_payload(payload)
    assert result.is_valid, result.to_dict()
    return render_document_plan(result.normalized)


class TestPDFGeneration(unittest.TestCase):
    """Test PDF generation functionality."""

    def setUp(self):
        self.plan = build_plan(make_durable_payload('FL'))

    def test_generate_pdf(self):
        """Test generating a complete instrument."""
        pdf_bytes, pdf_hash, page_count = generate_pdf_with_footer(self.plan, GENERATED_AT)

        self.assertTrue(len(pdf_bytes) > 0)
        self.assertEqual(len(pdf_hash), 64)
        self.assertEqual(pdf_bytes[:4], b'%PDF')
        self.assertGreaterEqual(page_count, 2)

    def test_page_count_matches_first_pass(self):
        """Test that the footer pass reports the first-pass page count."""
        _, _, page_count = generate_pdf_with_footer(self.plan, GENERATED_AT)
        self.assertEqual(page_count, count_pages(self.plan))

    def test_pdf_hash_uniqueness(self):
        """Test that different instruments produce different hashes."""
        _, hash1, _ = generate_pdf_with_footer(self.plan, GENERATED_AT)
        _, hash2, _ = generate_pdf_with_footer(build_plan(make_healthcare_payload('TX')), GENERATED_AT)
        self.assertNotEqual(hash1, hash2)

    def test_pdf_structure(self):
        """Test that the PDF contains pages and font resources."""
        pdf_bytes, _, _ = generate_pdf_with_footer(self.plan, GENERATED_AT)
        self.assertIn(b'/Type /Page', pdf_bytes)
        self.assertIn(b'/Font', pdf_bytes)

    def test_verify_integrity(self):
        pdf_bytes, pdf_hash, _ = generate_pdf_with_footer(self.plan, GENERATED_AT)
        self.assertTrue(verify_pdf_integrity(pdf_bytes, pdf_hash))
        self.assertFalse(verify_pdf_integrity(pdf_bytes + b'x', pdf_hash))

    def test_escapes_markup_in_content(self):
        """Test that user text with markup characters renders."""
        plan = [DocumentPlanItem(
            id='special_instructions', title='Special Instructions', numbering_level=1,
            content_blocks=[ContentBlock(type='paragraph', content='Smith & Sons <Holdings>')],
            clause_number=1,
        )]
        pdf_bytes, _, page_count = generate_pdf_with_footer(plan, GENERATED_AT)
        self.assertEqual(page_count, 1)
        self.assertEqual(pdf_bytes[:4], b'%PDF')


class TestSignatureBlock(unittest.TestCase):
    def test_signature_block_never_splits(self):
        block = SignatureBlock({'label': 'Principal', 'lines': [['Signature', ''], ['Name', 'Jane Principal']]})
        width, height = block.wrap(400, 600)
        self.assertEqual(height, 3 * 22 + 12)
        self.assertEqual(block.split(400, 10), [])

    def test_styles(self):
        styles = create_styles()
        for name in ('title', 'clause_heading', 'normal'):
            self.assertIn(name, styles)


if __name__ == '__main__':
    unittest.main()
