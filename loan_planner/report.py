from __future__ import annotations

from datetime import date
from io import BytesIO
from typing import Optional, Sequence
import logging

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import (
    SimpleDocTemplate,
    Paragraph,
    Spacer,
    Table,
    TableStyle,
    Flowable,
)

from loan_planner.calculator import Affordability, LoanParams, LoanSummary, ScheduleEntry
from loan_planner.formatting import format_currency, format_percent_of_income, format_rate


logger = logging.getLogger(__name__)

# --- Fonts and colors ---

FONT_NAME = "Helvetica"
FONT_NAME_BOLD = "Helvetica-Bold"
CURRENCY = "VND"

PALETTE = {
    "primary_text": "#1E293B",
    "secondary_text": "#64748B",
    "accent_blue": "#4361EE",
    "highlight_bg": "#F8F9FA",
    "grace_bg": "#FEF9C3",
    "border": "#E2E8F0",
    "warning": "#EF4444",
    "white": "#FFFFFF",
}

SCHEDULE_HEADERS = [
    "Month",
    "Rate",
    "Principal start",
    "Principal paid",
    "Interest paid",
    "Total",
    "Principal end",
    "Acc. principal",
    "Acc. interest",
    "Total paid",
    "Penalty",
    "Settlement",
]

# 列宽（mm），合计适配 7mm 页边距的横向 A4
SCHEDULE_COL_WIDTHS = [12, 15, 25, 22, 22, 22, 25, 25, 25, 25, 15, 28]


def report_filename(extension: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"loan-schedule-{today.isoformat()}.{extension}"


class Rule(Flowable):
    """一条水平分割线。"""

    def __init__(self, width, height=0):
        super().__init__()
        self.width = width
        self.height = height

    def draw(self):
        self.canv.setStrokeColor(colors.HexColor(PALETTE["border"]))
        self.canv.setLineWidth(0.4)
        self.canv.line(0, self.height, self.width, self.height)


def _header_footer(canvas, doc):
    """每页页眉页脚。"""
    canvas.saveState()
    canvas.setFont(FONT_NAME, 8)
    canvas.setFillColor(colors.HexColor(PALETTE["secondary_text"]))
    top = doc.height + doc.topMargin
    canvas.drawString(doc.leftMargin, top - 5 * mm, "Loan repayment schedule")
    canvas.drawString(doc.leftMargin, 8 * mm, f"Generated: {date.today().isoformat()}")
    canvas.drawRightString(doc.width + doc.leftMargin, 8 * mm, f"Page {doc.page}")
    canvas.restoreState()


def _money(v: float) -> str:
    return f"{format_currency(v)} {CURRENCY}"


def _schedule_rows(schedule: Sequence[ScheduleEntry]) -> list:
    rows = []
    for row in schedule:
        if row.month == 0:
            continue
        rows.append([
            str(row.month),
            format_rate(row.annual_rate),
            format_currency(row.principal_start),
            format_currency(row.principal_payment),
            format_currency(row.interest_payment),
            format_currency(row.total_payment),
            format_currency(row.principal_end),
            format_currency(row.accumulated_principal),
            format_currency(row.accumulated_interest),
            format_currency(row.total_paid_so_far),
            f"{row.penalty_rate:g}%",
            format_currency(row.total_settlement_cost),
        ])
    return rows


def generate_pdf(
    *,
    params: LoanParams,
    schedule: Sequence[ScheduleEntry],
    summary: LoanSummary,
    affordability: Optional[Affordability] = None,
) -> bytes:
    """根据还款计划生成横向 A4 PDF，返回 PDF 二进制。

    顶部信息块展示贷款参数与汇总；明细表列出第 1..N 期（跳过第 0 期期初行），
    每页重复表头。
    """
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        "title",
        parent=styles["Title"],
        fontName=FONT_NAME_BOLD,
        fontSize=16,
        leading=20,
        textColor=colors.HexColor(PALETTE["primary_text"]),
        spaceAfter=4,
    )

    info_style = ParagraphStyle(
        "info",
        parent=styles["BodyText"],
        fontName=FONT_NAME,
        fontSize=9,
        leading=13,
        textColor=colors.HexColor(PALETTE["primary_text"]),
    )

    warning_style = ParagraphStyle(
        "warning",
        parent=info_style,
        textColor=colors.HexColor(PALETTE["warning"]),
        backColor=colors.HexColor("#FEF2F2"),
        borderPadding=5,
    )

    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=landscape(A4),
        leftMargin=7 * mm,
        rightMargin=7 * mm,
        topMargin=12 * mm,
        bottomMargin=14 * mm,
        title="Loan repayment schedule",
    )

    story = []
    story.append(Paragraph("LOAN REPAYMENT SCHEDULE", title_style))
    story.append(Rule(doc.width))
    story.append(Spacer(1, 3 * mm))

    info_data = [
        [
            Paragraph(
                f"Loan amount: {_money(params.loan_amount)}<br/>"
                f"Term: {params.term_months} months<br/>"
                f"Principal grace period: {params.grace_period_years} years",
                info_style,
            ),
            Paragraph(
                f"Floating rate: {params.floating_rate:g}% / year<br/>"
                f"Monthly income: {_money(params.monthly_income)}<br/>"
                f"Total interest: {_money(summary.total_interest)}",
                info_style,
            ),
            Paragraph(
                f"Total principal + interest: {_money(summary.total_payment)}<br/>"
                f"Average monthly payment: {_money(summary.avg_monthly_payment)}<br/>"
                f"Promotional / floating months: {summary.promotional_months} / {summary.floating_months}",
                info_style,
            ),
        ]
    ]
    info_table = Table(info_data, colWidths=[90 * mm, 90 * mm, 100 * mm])
    info_table.setStyle(
        TableStyle(
            [
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor(PALETTE["highlight_bg"])),
                ("BOX", (0, 0), (-1, -1), 0.6, colors.HexColor(PALETTE["border"])),
                ("PADDING", (0, 0), (-1, -1), 6),
            ]
        )
    )
    story.append(info_table)

    if affordability is not None and affordability.exceeds_threshold:
        story.append(Spacer(1, 3 * mm))
        story.append(
            Paragraph(
                f"<b>Warning:</b> loan payments take {format_percent_of_income(affordability.income_ratio)} "
                "of monthly income. Banks usually require this ratio to stay below 50-70%.",
                warning_style,
            )
        )

    story.append(Spacer(1, 5 * mm))

    table_data = [SCHEDULE_HEADERS] + _schedule_rows(schedule)
    table = Table(
        table_data,
        colWidths=[w * mm for w in SCHEDULE_COL_WIDTHS],
        repeatRows=1,
    )
    table_style = [
        ("FONT", (0, 0), (-1, -1), FONT_NAME, 7),
        ("FONT", (0, 0), (-1, 0), FONT_NAME_BOLD, 7),
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(PALETTE["accent_blue"])),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.HexColor(PALETTE["white"])),
        ("ALIGN", (0, 0), (-1, 0), "CENTER"),
        ("ALIGN", (2, 1), (-1, -1), "RIGHT"),
        ("ALIGN", (0, 1), (1, -1), "CENTER"),
        ("ALIGN", (10, 1), (10, -1), "CENTER"),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.HexColor(PALETTE["white"]), colors.HexColor(PALETTE["highlight_bg"])]),
        ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.HexColor(PALETTE["border"])),
        ("TOPPADDING", (0, 0), (-1, -1), 1.5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 1.5),
    ]
    for idx, row in enumerate((e for e in schedule if e.month > 0), start=1):
        if row.is_grace_period:
            table_style.append(("BACKGROUND", (0, idx), (-1, idx), colors.HexColor(PALETTE["grace_bg"])))
    table.setStyle(TableStyle(table_style))
    story.append(table)

    doc.build(story, onFirstPage=_header_footer, onLaterPages=_header_footer)
    pdf_bytes = buf.getvalue()
    logger.info("rendered schedule pdf: rows=%d bytes=%d", len(table_data) - 1, len(pdf_bytes))
    return pdf_bytes
