from __future__ import annotations

import os
from dataclasses import asdict
from functools import lru_cache
from io import BytesIO
from typing import List, Optional, Sequence, Tuple
import logging
import math
import zipfile

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from fastapi import FastAPI, HTTPException, Request, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator, model_validator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from loan_planner.calculator import (
    Affordability,
    LoanParams,
    LoanSummary,
    PenaltyRate,
    PromotionalRate,
    ScheduleEntry,
    assess_affordability,
    build_schedule,
    summarize,
)
from loan_planner.formatting import parse_currency
from loan_planner.report import generate_pdf, report_filename


logger = logging.getLogger(__name__)

API_KEY = os.getenv("API_KEY")

DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
EXPORT_RATE_LIMIT = os.getenv("RATE_LIMIT_EXPORT", "15/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() not in ("0", "false", "no")
MAX_TERM_YEARS = int(os.getenv("MAX_TERM_YEARS", "35"))
MAX_LOAN_AMOUNT = float(os.getenv("MAX_LOAN_AMOUNT", "10000000000000"))
MAX_ANNUAL_RATE = float(os.getenv("MAX_ANNUAL_RATE", "30"))
MAX_SCHEDULE_ROWS = int(os.getenv("MAX_SCHEDULE_ROWS", "2000"))
MAX_EXPORT_BYTES = int(os.getenv("MAX_EXPORT_BYTES", str(6 * 1024 * 1024)))
SCHEDULE_CACHE_SIZE = int(os.getenv("SCHEDULE_CACHE_SIZE", "128"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

ALLOWED_PAGE_SIZES = (12, 24, 36, 60)
DEFAULT_PAGE_SIZE = 24


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return get_remote_address(request)


limiter = Limiter(key_func=_client_ip, default_limits=[DEFAULT_RATE_LIMIT], enabled=RATE_LIMIT_ENABLED)

app = FastAPI(
    title="Loan Planner",
    description="Month-by-month repayment schedule for promotional-rate mortgages.",
    version="0.1.0",
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


def require_api_key(request: Request):
    if not API_KEY:
        return
    provided = request.headers.get("x-api-key")
    if not provided or provided != API_KEY:
        raise HTTPException(status_code=401, detail="invalid or missing api key")


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


class PromotionalRateIn(BaseModel):
    from_year: int = Field(..., ge=1, description="起始贷款年度（从 1 开始）")
    to_year: int = Field(..., ge=1, description="结束贷款年度（含）")
    rate: float = Field(..., ge=0, le=MAX_ANNUAL_RATE, description="年利率百分比，例如 5.2")

    @model_validator(mode="after")
    def _validate_range(self) -> "PromotionalRateIn":
        if self.to_year < self.from_year:
            raise ValueError("to_year cannot be earlier than from_year")
        return self


class PenaltyRateIn(BaseModel):
    before_year: int = Field(..., ge=1, description="贷款年度 <= before_year 时适用")
    penalty_rate: float = Field(..., ge=0, le=100, description="违约金占剩余本金的百分比")


class LoanRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "loan_amount": 2_000_000_000,
                    "term_years": 20,
                    "grace_period_years": 0,
                    "floating_rate": 10.0,
                    "monthly_income": 60_000_000,
                    "promotional_rates": [
                        {"from_year": 1, "to_year": 1, "rate": 5.2},
                        {"from_year": 2, "to_year": 3, "rate": 6.7},
                    ],
                    "penalty_rates": [
                        {"before_year": 3, "penalty_rate": 3},
                        {"before_year": 5, "penalty_rate": 1},
                    ],
                }
            ]
        }
    }

    # 基础贷款信息
    loan_amount: float = Field(..., gt=0, le=MAX_LOAN_AMOUNT, description="贷款本金，可传数字或 \"2.000.000.000\" 形式的字符串")
    term_years: int = Field(..., ge=1, le=MAX_TERM_YEARS, description="贷款年限（年）")
    grace_period_years: int = Field(0, ge=0, description="宽限期年数，期内只付利息")
    floating_rate: float = Field(..., ge=0, le=MAX_ANNUAL_RATE, description="优惠期结束后的浮动年利率百分比")
    monthly_income: float = Field(0, ge=0, description="月收入，可传数字或带千分位的字符串")

    # 利率与违约金规则
    promotional_rates: List[PromotionalRateIn] = Field(default_factory=list)
    penalty_rates: List[PenaltyRateIn] = Field(default_factory=list)

    @field_validator("loan_amount", "monthly_income", mode="before")
    @classmethod
    def _parse_grouped_amount(cls, value):
        # 表单输入带千分位："60.000.000" -> 60000000
        if isinstance(value, str):
            return parse_currency(value)
        return value

    @model_validator(mode="after")
    def _validate_grace(self) -> "LoanRequest":
        if self.grace_period_years >= self.term_years:
            raise ValueError("grace_period_years must be shorter than term_years")
        return self

    def to_params(self) -> LoanParams:
        return LoanParams(
            loan_amount=self.loan_amount,
            term_months=self.term_years * 12,
            promotional_rates=[PromotionalRate(p.from_year, p.to_year, p.rate) for p in self.promotional_rates],
            floating_rate=self.floating_rate,
            monthly_income=self.monthly_income,
            penalty_rates=[PenaltyRate(p.before_year, p.penalty_rate) for p in self.penalty_rates],
            grace_period_years=self.grace_period_years,
        )


class ScheduleRowResponse(BaseModel):
    month: int
    principal_start: float
    principal_payment: float
    interest_payment: float
    total_payment: float
    principal_end: float
    annual_rate: float
    is_grace_period: bool
    accumulated_principal: float
    accumulated_interest: float
    total_paid_so_far: float
    monthly_remaining: float
    accumulated_savings: float
    penalty_rate: float
    penalty_amount: float
    total_settlement_cost: float


class SummaryResponse(BaseModel):
    total_principal: float
    total_interest: float
    total_payment: float
    avg_monthly_payment: float
    avg_monthly_payment_promotional: float
    avg_monthly_payment_floating: float
    promotional_months: int
    floating_months: int


class AffordabilityResponse(BaseModel):
    income_ratio: float
    income_ratio_promotional: float
    income_ratio_floating: float
    remaining_promotional: float
    remaining_floating: float
    exceeds_threshold: bool


class LoanSummaryResponse(BaseModel):
    summary: SummaryResponse
    affordability: AffordabilityResponse


class ScheduleResponse(LoanSummaryResponse):
    rows: List[ScheduleRowResponse]
    page: Optional[int] = None
    page_size: Optional[int] = None
    total_pages: Optional[int] = None


@lru_cache(maxsize=SCHEDULE_CACHE_SIZE)
def _cached_schedule(params: LoanParams) -> Tuple[ScheduleEntry, ...]:
    # 计算无副作用，相同参数共用同一份还款计划
    return tuple(build_schedule(params))


def _compute(body: LoanRequest) -> Tuple[LoanParams, Tuple[ScheduleEntry, ...], LoanSummary, Affordability]:
    params = body.to_params()
    schedule = _cached_schedule(params)
    summary = summarize(schedule, params.promotional_rates)
    affordability = assess_affordability(summary, params.monthly_income)
    return params, schedule, summary, affordability


def _paginate(
    schedule: Sequence[ScheduleEntry],
    page: int,
    page_size: int,
) -> Tuple[Sequence[ScheduleEntry], int, int]:
    # 分页只覆盖第 1..N 期；越界页码取最近的有效页
    payments = schedule[1:]
    total_pages = math.ceil(len(payments) / page_size)
    page = max(1, min(page, total_pages))
    start = (page - 1) * page_size
    return payments[start:start + page_size], page, total_pages


def _summary_payload(summary: LoanSummary, affordability: Affordability) -> dict:
    return {
        "summary": SummaryResponse(**asdict(summary)),
        "affordability": AffordabilityResponse(**asdict(affordability)),
    }


@app.get("/health", tags=["health"])
@limiter.exempt
def health() -> dict:
    return {"status": "ok"}


@app.post(
    "/v1/loans/schedule:calc",
    tags=["loan"],
    responses={400: {"description": "Unsupported page size"}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def calc_schedule(
    request: Request,
    body: LoanRequest,
    page: Optional[int] = Query(None, ge=1, description="页码（从 1 开始，覆盖第 1..N 期）"),
    page_size: Optional[int] = Query(None, description="每页期数：12、24、36 或 60"),
    _=Depends(require_api_key),
) -> ScheduleResponse:
    """返回完整还款计划（含第 0 期）或其中一页，附带汇总。"""
    if page_size is not None and page_size not in ALLOWED_PAGE_SIZES:
        raise HTTPException(status_code=400, detail=f"page_size must be one of {list(ALLOWED_PAGE_SIZES)}")

    _, schedule, summary, affordability = _compute(body)

    if page is None and page_size is None:
        rows = [ScheduleRowResponse(**asdict(e)) for e in schedule]
        return ScheduleResponse(rows=rows, **_summary_payload(summary, affordability))

    page_size = page_size or DEFAULT_PAGE_SIZE
    entries, page, total_pages = _paginate(schedule, page or 1, page_size)
    return ScheduleResponse(
        rows=[ScheduleRowResponse(**asdict(e)) for e in entries],
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        **_summary_payload(summary, affordability),
    )


@app.post("/v1/loans/schedule:summary", tags=["loan"])
@limiter.limit(DEFAULT_RATE_LIMIT)
def calc_summary(request: Request, body: LoanRequest, _=Depends(require_api_key)) -> LoanSummaryResponse:
    _, _schedule, summary, affordability = _compute(body)
    return LoanSummaryResponse(**_summary_payload(summary, affordability))


@app.post(
    "/v1/loans/schedule:export-xlsx",
    tags=["loan"],
    responses={413: {"description": "Schedule or export too large"}},
)
@limiter.limit(EXPORT_RATE_LIMIT)
def export_xlsx(request: Request, body: LoanRequest, _=Depends(require_api_key)):
    """导出还款计划 Excel（汇总表 + 逐月明细表）。"""
    params, schedule, summary, affordability = _compute(body)
    _ensure_row_limit(len(schedule) - 1, "schedule")

    xlsx_bytes = schedule_to_xlsx(params, schedule, summary, affordability)
    _ensure_export_size(len(xlsx_bytes))

    return StreamingResponse(
        BytesIO(xlsx_bytes),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={report_filename('xlsx')}"},
    )


@app.post(
    "/v1/loans/schedule:export-pdf",
    tags=["loan"],
    responses={413: {"description": "Schedule or export too large"}},
)
@limiter.limit(EXPORT_RATE_LIMIT)
def export_pdf(request: Request, body: LoanRequest, _=Depends(require_api_key)):
    params, schedule, summary, affordability = _compute(body)
    _ensure_row_limit(len(schedule) - 1, "schedule")

    pdf_bytes = generate_pdf(params=params, schedule=schedule, summary=summary, affordability=affordability)
    _ensure_export_size(len(pdf_bytes))

    return StreamingResponse(
        BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={report_filename('pdf')}"},
    )


@app.post(
    "/v1/loans/schedule:export-zip",
    tags=["loan"],
    responses={413: {"description": "Schedule or export too large"}},
)
@limiter.limit(EXPORT_RATE_LIMIT)
def export_zip(request: Request, body: LoanRequest, _=Depends(require_api_key)):
    """导出 ZIP（Excel + PDF 各一份），响应头返回总利息与平均月供。"""
    params, schedule, summary, affordability = _compute(body)
    _ensure_row_limit(len(schedule) - 1, "schedule")

    pdf_bytes = generate_pdf(params=params, schedule=schedule, summary=summary, affordability=affordability)

    zip_buf = BytesIO()
    with zipfile.ZipFile(zip_buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(report_filename("xlsx"), schedule_to_xlsx(params, schedule, summary, affordability))
        zf.writestr(report_filename("pdf"), pdf_bytes)
    zip_bytes = zip_buf.getvalue()
    _ensure_export_size(len(zip_bytes))

    return StreamingResponse(
        BytesIO(zip_bytes),
        media_type="application/zip",
        headers={
            "Content-Disposition": f"attachment; filename={report_filename('zip')}",
            "X-Total-Interest": f"{summary.total_interest:.2f}",
            "X-Avg-Monthly-Payment": f"{summary.avg_monthly_payment:.2f}",
        },
    )


SCHEDULE_COLUMNS = [
    ("Month", 8),
    ("Rate (%/year)", 12),
    ("Principal start", 18),
    ("Principal paid", 18),
    ("Interest paid", 18),
    ("Total payment", 18),
    ("Principal end", 18),
    ("Accumulated principal", 18),
    ("Accumulated interest", 18),
    ("Total paid", 18),
    ("Income remaining", 18),
    ("Accumulated savings", 18),
    ("Penalty (%)", 12),
    ("Penalty amount", 18),
    ("Settlement cost", 18),
    ("Grace period", 8),
]

MONEY_FORMAT = "#,##0"


def schedule_to_xlsx(
    params: LoanParams,
    schedule: Sequence[ScheduleEntry],
    summary: LoanSummary,
    affordability: Affordability,
) -> bytes:
    """将还款计划导出为 Excel（xlsx），返回二进制。

    "Summary" 表为贷款信息与汇总，"Schedule" 表为第 1..N 期明细。
    """
    wb = Workbook()

    header_font = Font(bold=True, name="Arial", size=11, color="FFFFFF")
    title_font = Font(bold=True, name="Arial", size=12)
    body_font = Font(name="Arial", size=10)
    negative_font = Font(name="Arial", size=10, color="EF4444")
    header_fill = PatternFill("solid", fgColor="4361EE")
    alt_fill = PatternFill("solid", fgColor="F8F9FA")
    grace_fill = PatternFill("solid", fgColor="FEF9C3")
    border = Border(bottom=Side(style="thin", color="E2E8F0"))
    align_right = Alignment(horizontal="right")
    align_center = Alignment(horizontal="center")

    ws = wb.active
    ws.title = "Summary"
    summary_rows = [
        ("LOAN DETAILS", None),
        ("Loan amount", params.loan_amount),
        ("Term (months)", params.term_months),
        ("Principal grace period (years)", params.grace_period_years),
        ("Floating rate (%/year)", params.floating_rate),
        ("Monthly income", params.monthly_income),
        (None, None),
        ("SUMMARY", None),
        ("Total principal", summary.total_principal),
        ("Total interest", summary.total_interest),
        ("Total principal + interest", summary.total_payment),
        ("Average monthly payment", summary.avg_monthly_payment),
        (f"Average payment, promotional ({summary.promotional_months} months)", summary.avg_monthly_payment_promotional),
        (f"Average payment, floating ({summary.floating_months} months)", summary.avg_monthly_payment_floating),
        ("Payment / income (%)", round(affordability.income_ratio, 1)),
    ]
    for label, value in summary_rows:
        ws.append([label, value])
        cell = ws.cell(row=ws.max_row, column=1)
        cell.font = title_font if value is None else body_font
        value_cell = ws.cell(row=ws.max_row, column=2)
        value_cell.font = body_font
        if isinstance(value, float):
            value_cell.number_format = MONEY_FORMAT
    # 利率与比例不按金额格式显示
    for row_idx in (5, 15):
        ws.cell(row=row_idx, column=2).number_format = "0.00"
    if affordability.exceeds_threshold:
        ws.cell(row=15, column=2).font = negative_font
    ws.column_dimensions["A"].width = 44
    ws.column_dimensions["B"].width = 22

    ws = wb.create_sheet("Schedule")
    ws.append([title for title, _ in SCHEDULE_COLUMNS])
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = align_center

    payments = [e for e in schedule if e.month > 0]
    for idx, row in enumerate(payments, start=2):
        ws.append([
            row.month,
            round(row.annual_rate, 2),
            round(row.principal_start, 2),
            round(row.principal_payment, 2),
            round(row.interest_payment, 2),
            round(row.total_payment, 2),
            round(row.principal_end, 2),
            round(row.accumulated_principal, 2),
            round(row.accumulated_interest, 2),
            round(row.total_paid_so_far, 2),
            round(row.monthly_remaining, 2),
            round(row.accumulated_savings, 2),
            row.penalty_rate,
            round(row.penalty_amount, 2),
            round(row.total_settlement_cost, 2),
            "Yes" if row.is_grace_period else "",
        ])
        for col_idx in range(1, len(SCHEDULE_COLUMNS) + 1):
            cell = ws.cell(row=idx, column=col_idx)
            cell.font = body_font
            cell.alignment = align_right if 1 < col_idx < len(SCHEDULE_COLUMNS) else align_center
            if col_idx not in (1, 2, 13, 16):
                cell.number_format = MONEY_FORMAT
            if row.is_grace_period:
                cell.fill = grace_fill
            elif idx % 2 == 0:
                cell.fill = alt_fill
            cell.border = border
        if row.monthly_remaining < 0:
            ws.cell(row=idx, column=11).font = negative_font

    for i, (_, width) in enumerate(SCHEDULE_COLUMNS, start=1):
        ws.column_dimensions[get_column_letter(i)].width = width
    ws.freeze_panes = "B2"

    buf = BytesIO()
    wb.save(buf)
    xlsx_bytes = buf.getvalue()
    logger.info("rendered schedule xlsx: rows=%d bytes=%d", len(payments), len(xlsx_bytes))
    return xlsx_bytes


def _ensure_row_limit(rows: int, label: str) -> None:
    if rows > MAX_SCHEDULE_ROWS:
        logger.warning("rejected export: %s has %d rows (limit %d)", label, rows, MAX_SCHEDULE_ROWS)
        raise HTTPException(status_code=413, detail=f"{label} too large, exceeds {MAX_SCHEDULE_ROWS} rows limit")


def _ensure_export_size(size_bytes: int) -> None:
    if size_bytes > MAX_EXPORT_BYTES:
        logger.warning("rejected export: %d bytes (limit %d)", size_bytes, MAX_EXPORT_BYTES)
        raise HTTPException(status_code=413, detail="export file too large")
