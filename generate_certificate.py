import os
import logging
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from PyPDF2 import PdfReader, PdfWriter
from reportlab.lib.colors import Color
from reportlab.lib.pagesizes import letter, landscape
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

PRIMARY_COLOR = Color(0.098, 0.463, 0.824)  # #1976D2
ACCENT_COLOR = Color(0.961, 0.486, 0)  # #F57C00
TEXT_COLOR = Color(0.2, 0.2, 0.2)


def verification_url_for(certificate_id, base_url='http://localhost:5000'):
    return f"{(base_url or '').rstrip('/')}/verify/{certificate_id}"


def create_qr_image(data: str, box_size: int = 10, border: int = 2) -> ImageReader:
    """Render `data` as a QR code PNG wrapped for reportlab."""
    qr = qrcode.QRCode(box_size=box_size, border=border, error_correction=ERROR_CORRECT_M)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    buffer.seek(0)
    return ImageReader(buffer)


def _draw_certificate(can, certificate, user, course, cert_hash, verification_url, width, height):
    center_x = width / 2

    # Border
    can.setStrokeColor(PRIMARY_COLOR)
    can.setLineWidth(2)
    can.rect(30, 30, width - 60, height - 60, stroke=1, fill=0)

    # Header
    can.setFillColor(PRIMARY_COLOR)
    can.setFont("Helvetica-Bold", 36)
    can.drawCentredString(center_x, height - 80, "WeSpark")
    can.setFillColor(TEXT_COLOR)
    can.setFont("Helvetica", 24)
    can.drawCentredString(center_x, height - 130, "Certificate of Completion")

    # Holder and course
    can.setFont("Helvetica", 16)
    can.drawCentredString(center_x, height - 200, "This is to certify that")
    can.setFillColor(PRIMARY_COLOR)
    can.setFont("Helvetica-Bold", 28)
    can.drawCentredString(center_x, height - 240, user.name)
    can.setFillColor(TEXT_COLOR)
    can.setFont("Helvetica", 16)
    can.drawCentredString(center_x, height - 280, "has successfully completed")
    can.setFillColor(ACCENT_COLOR)
    can.setFont("Helvetica-Bold", 20)
    can.drawCentredString(center_x, height - 320, course.title)
    can.setFillColor(TEXT_COLOR)
    can.setFont("Helvetica", 14)
    can.drawCentredString(center_x, height - 350, course.description or '')

    # Duration, date, identity
    can.setFont("Helvetica", 12)
    can.drawString(center_x - 200, height - 400, f"Duration: {course.duration} hours")
    can.drawString(center_x + 50, height - 400, f"Date of Completion: {certificate.completion_date_iso}")
    if certificate.city:
        can.drawCentredString(center_x, height - 420, certificate.city)
    can.drawCentredString(center_x, height - 450, f"Certificate ID: {certificate.certificate_id}")
    if cert_hash:
        can.setFont("Helvetica", 9)
        can.drawCentredString(center_x, height - 470, f"Hash: {cert_hash[:32]}...")

    # QR code
    can.drawImage(create_qr_image(verification_url), width - 150, height - 200, width=100, height=100)
    can.setFont("Helvetica", 10)
    can.drawString(width - 140, height - 220, "Scan to verify")

    # Footer
    can.setFont("Helvetica", 12)
    can.drawCentredString(center_x, 50, "WeSpark Certificate Authority")


def generate_certificate_pdf(certificate, user, course, cert_hash=None, base_url='http://localhost:5000',
                             template_path=None) -> bytes:
    """Render the certificate as PDF bytes.

    When `template_path` points to an existing PDF, the drawn page is merged
    onto the template's first page.
    """
    pagesize = landscape(letter)  # 792 x 612
    width, height = pagesize
    verification_url = verification_url_for(certificate.certificate_id, base_url)

    packet = BytesIO()
    can = canvas.Canvas(packet, pagesize=pagesize)
    can.setTitle(f"Certificate {certificate.certificate_id}")
    _draw_certificate(can, certificate, user, course, cert_hash or certificate.hash, verification_url, width, height)
    can.showPage()
    can.save()
    packet.seek(0)

    if not template_path:
        return packet.getvalue()
    if not os.path.exists(template_path):
        logging.warning(f"[PDF] certificate template not found at {template_path}; using plain layout")
        return packet.getvalue()

    # Merge overlay with template
    template_pdf = PdfReader(template_path)
    overlay_pdf = PdfReader(packet)
    output_pdf = PdfWriter()
    page = template_pdf.pages[0]
    page.merge_page(overlay_pdf.pages[0])
    output_pdf.add_page(page)
    out = BytesIO()
    output_pdf.write(out)
    return out.getvalue()
