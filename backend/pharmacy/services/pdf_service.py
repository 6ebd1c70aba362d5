"""
PDF Receipt Generation Service
Creates a printable sale receipt with pharmacy, seller and line item details
"""
from io import BytesIO
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from pharmacy.core.config import settings
from pharmacy.models.user import User
from pharmacy.utils.clock import to_local, utc_now

PAYMENT_LABELS = {"cash": "Cash", "card": "Card", "mobile_money": "Mobile Money"}


def _amount(value) -> str:
    return f"{float(value):,.2f}"


def generate_receipt_pdf(sale: dict, pharmacy: Optional[User] = None) -> BytesIO:
    """
    Render a receipt for a projected sale (see sale_display.present_sale).

    Args:
        sale: Display projection of the sale
        pharmacy: Tenant root account, for the header

    Returns:
        BytesIO buffer containing PDF data
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=0.5 * inch, bottomMargin=0.5 * inch)

    elements = []
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        "ReceiptTitle",
        parent=styles["Heading1"],
        fontSize=20,
        textColor=colors.HexColor("#047857"),
        alignment=TA_CENTER,
        spaceAfter=6,
    )
    heading_style = ParagraphStyle(
        "ReceiptHeading",
        parent=styles["Heading2"],
        fontSize=12,
        textColor=colors.HexColor("#1f2937"),
        spaceAfter=4,
    )
    normal_style = ParagraphStyle(
        "ReceiptNormal",
        parent=styles["Normal"],
        fontSize=10,
        textColor=colors.HexColor("#374151"),
    )
    footer_style = ParagraphStyle(
        "ReceiptFooter",
        parent=styles["Normal"],
        fontSize=8,
        textColor=colors.grey,
        alignment=TA_CENTER,
    )

    pharmacy_name = (pharmacy.pharmacy_name if pharmacy else None) or settings.PHARMACY_FALLBACK_NAME
    elements.append(Paragraph(pharmacy_name, title_style))
    if pharmacy and pharmacy.phone:
        elements.append(Paragraph(f"Tel: {pharmacy.phone}", footer_style))
    elements.append(Spacer(1, 0.25 * inch))

    info_data = [
        [
            Paragraph(
                f"<b>Receipt #:</b> {sale['sale_number']}<br/>"
                f"<b>Date:</b> {sale['formatted_date']}<br/>"
                f"<b>Time:</b> {sale['formatted_time']}",
                normal_style,
            ),
            Paragraph(
                f"<b>Served by:</b> {sale['sold_by']['name']}<br/>"
                f"<b>Payment:</b> {PAYMENT_LABELS.get(sale['payment_method'], sale['payment_method'])}<br/>"
                f"<b>Status:</b> {sale['status'].upper()}",
                normal_style,
            ),
        ]
    ]
    info_table = Table(info_data, colWidths=[3.5 * inch, 3 * inch])
    info_table.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("TOPPADDING", (0, 0), (-1, -1), 6),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
    ]))
    elements.append(info_table)

    if sale.get("customer_name"):
        elements.append(Spacer(1, 0.15 * inch))
        elements.append(Paragraph("<b>Customer:</b>", heading_style))
        customer_info = sale["customer_name"]
        if sale.get("customer_phone"):
            customer_info += f"<br/>Phone: {sale['customer_phone']}"
        elements.append(Paragraph(customer_info, normal_style))
    elements.append(Spacer(1, 0.25 * inch))

    items_data = [["Item", "Batch", "Qty", "Unit Price", "Amount"]]
    for line in sale["items"]:
        items_data.append([
            Paragraph(line["drug_name"] or "", normal_style),
            line["batch_no"] or "",
            str(line["quantity"]),
            _amount(line["unit_price"]),
            _amount(line["total_price"]),
        ])

    items_table = Table(items_data, colWidths=[2.6 * inch, 1.2 * inch, 0.6 * inch, 1 * inch, 1.1 * inch])
    items_table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f3f4f6")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.HexColor("#1f2937")),
        ("ALIGN", (2, 0), (-1, -1), "RIGHT"),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#fafafa")]),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
    ]))
    elements.append(items_table)
    elements.append(Spacer(1, 0.2 * inch))

    total_data = [
        ["", "", "Items:", str(sale["total_items"])],
        ["", "", "TOTAL:", _amount(sale["total_amount"])],
    ]
    total_table = Table(total_data, colWidths=[2.6 * inch, 1.8 * inch, 1 * inch, 1.1 * inch])
    total_table.setStyle(TableStyle([
        ("ALIGN", (2, 0), (-1, -1), "RIGHT"),
        ("FONTNAME", (2, 1), (-1, 1), "Helvetica-Bold"),
        ("LINEABOVE", (2, 1), (-1, 1), 1, colors.black),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]))
    elements.append(total_table)
    elements.append(Spacer(1, 0.5 * inch))

    elements.append(Paragraph("Thank you for your purchase. Get well soon!", footer_style))
    printed = to_local(utc_now()).strftime(f"{settings.DATE_FORMAT} at {settings.TIME_FORMAT}")
    elements.append(Paragraph(f"Receipt printed on {printed}", footer_style))

    doc.build(elements)
    buffer.seek(0)
    return buffer
