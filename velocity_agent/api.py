from __future__ import annotations

import logging
import os
from io import BytesIO
from typing import Optional
import zipfile
from urllib.parse import quote

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from velocity_agent.calculator import (
    STRATEGY_BASELINE,
    STRATEGY_EXTRA_PAYMENT,
    STRATEGY_VELOCITY,
    AggregateReport,
    Comparison,
    CreditLineParams,
    InvestmentParams,
    LoanParams,
    NonAmortizingCreditLineError,
    StrategyChoice,
    compare_strategies,
    project_investment,
    simulate_all_strategies,
    simulate_baseline,
    simulate_extra_payment,
    simulate_velocity_banking,
)
from velocity_agent.report import STRATEGY_CN, build_pdf


logger = logging.getLogger(__name__)

API_KEY = os.getenv("API_KEY")

DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
EXPORT_RATE_LIMIT = os.getenv("RATE_LIMIT_EXPORT", "15/minute")
MAX_TERM_MONTHS = int(os.getenv("MAX_TERM_MONTHS", "600"))
MAX_PRINCIPAL = float(os.getenv("MAX_PRINCIPAL", "30000000"))
MAX_ANNUAL_RATE = float(os.getenv("MAX_ANNUAL_RATE", "1.0"))
MAX_SIMULATED_MONTHS = int(os.getenv("MAX_SIMULATED_MONTHS", "1200"))
MAX_EXPORT_BYTES = int(os.getenv("MAX_EXPORT_BYTES", str(6 * 1024 * 1024)))


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


limiter = Limiter(key_func=_client_ip, default_limits=[DEFAULT_RATE_LIMIT])

app = FastAPI(
    title="Velocity Agent",
    description="原方案、每月多还、Velocity Banking 与定投四种策略的房贷对比。",
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


@app.exception_handler(NonAmortizingCreditLineError)
async def _non_amortizing_handler(request: Request, exc: NonAmortizingCreditLineError):
    # HELOC 月供不足以覆盖利息：返回结构化信息，便于前端提示“提高月供”
    logger.info("rejected simulation: %s", exc)
    return JSONResponse(status_code=422, content={"detail": exc.to_dict()})


class LoanRequest(BaseModel):
    # 房贷基础信息；利率均为小数，例如 0.063
    principal: float = Field(..., gt=0, le=MAX_PRINCIPAL, description="当前房贷余额")
    term_months: int = Field(..., gt=0, le=MAX_TERM_MONTHS, description="剩余期数（月），例如 300")
    annual_rate: float = Field(..., ge=0, le=MAX_ANNUAL_RATE, description="房贷年利率（小数），例如 0.063")

    def to_params(self) -> LoanParams:
        return LoanParams(
            principal=self.principal,
            term_months=self.term_months,
            annual_rate=self.annual_rate,
            max_months=MAX_SIMULATED_MONTHS,
        )


class BaselineResponse(BaseModel):
    monthly_payment: float
    total_months: int
    total_interest: float
    reached_month_cap: bool


class ComparisonResponse(BaseModel):
    interest_saved: float
    time_saved_months: int
    years_saved: float

    @classmethod
    def of(cls, comparison: Comparison) -> "ComparisonResponse":
        return cls(
            interest_saved=float(comparison.interest_saved),
            time_saved_months=comparison.time_saved_months,
            years_saved=float(comparison.years_saved),
        )


class ExtraPaymentRequest(LoanRequest):
    extra_payment: float = Field(..., ge=0, le=MAX_PRINCIPAL, description="每月额外归还的本金")


class ExtraPaymentResponse(BaseModel):
    monthly_payment: float
    base_monthly_payment: float
    extra_payment: float
    total_months: int
    total_interest: float
    reached_month_cap: bool
    vs_baseline: ComparisonResponse


class VelocityRequest(LoanRequest):
    heloc_annual_rate: float = Field(..., ge=0, le=MAX_ANNUAL_RATE, description="HELOC 年利率（小数），例如 0.07")
    heloc_chunk_amount: float = Field(..., ge=0, le=MAX_PRINCIPAL, description="每次从 HELOC 提取并还入房贷的金额")
    heloc_payment_per_month: float = Field(..., ge=0, le=MAX_PRINCIPAL, description="每月偿还 HELOC 的固定金额")
    repeat_chunks: bool = Field(False, description="HELOC 还清后是否再次提取")

    def to_line(self) -> CreditLineParams:
        return CreditLineParams(
            annual_rate=self.heloc_annual_rate,
            chunk_amount=self.heloc_chunk_amount,
            monthly_payment=self.heloc_payment_per_month,
            repeat_chunks=self.repeat_chunks,
        )


class VelocityResponse(BaseModel):
    baseline_monthly_payment: float
    total_months: int
    mortgage_interest: float
    heloc_interest: float
    total_interest: float
    chunks_drawn: int
    reached_month_cap: bool
    vs_baseline: ComparisonResponse


class InvestmentRequest(BaseModel):
    horizon_months: int = Field(..., ge=0, le=MAX_SIMULATED_MONTHS, description="定投期限（月）")
    monthly_contribution: float = Field(..., ge=0, le=MAX_PRINCIPAL, description="每月定投金额")
    annual_return: float = Field(..., ge=-1, le=MAX_ANNUAL_RATE, description="预期年化收益（小数），例如 0.10")
    baseline_interest: float = Field(0.0, ge=0, description="原方案总利息")
    comparison_interest: float = Field(0.0, ge=0, description="对比还款方案的总利息")


class InvestmentResponse(BaseModel):
    total_months: int
    total_invested: float
    total_value: float
    investment_gains: float
    net_benefit: float


class StrategyRequest(BaseModel):
    # 默认值即示例场景：50 万、300 期、6.3%，HELOC 7%、每次 1.5 万、月还 3000
    principal: float = Field(500000, gt=0, le=MAX_PRINCIPAL, description="当前房贷余额")
    term_months: int = Field(300, gt=0, le=MAX_TERM_MONTHS, description="剩余期数（月）")
    annual_rate: float = Field(0.063, ge=0, le=MAX_ANNUAL_RATE, description="房贷年利率（小数）")
    heloc_annual_rate: float = Field(0.07, ge=0, le=MAX_ANNUAL_RATE, description="HELOC 年利率（小数）")
    heloc_chunk_amount: float = Field(15000, ge=0, le=MAX_PRINCIPAL, description="每次提取金额")
    heloc_payment_per_month: float = Field(3000, ge=0, le=MAX_PRINCIPAL, description="每月偿还 HELOC 金额，同时作为每月多还/定投金额")
    repeat_chunks: bool = Field(True, description="HELOC 还清后是否再次提取")
    investment_return_annual: float = Field(0.10, ge=-1, le=MAX_ANNUAL_RATE, description="定投预期年化收益（小数）")

    def to_params(self) -> tuple[LoanParams, CreditLineParams]:
        loan = LoanParams(
            principal=self.principal,
            term_months=self.term_months,
            annual_rate=self.annual_rate,
            max_months=MAX_SIMULATED_MONTHS,
        )
        line = CreditLineParams(
            annual_rate=self.heloc_annual_rate,
            chunk_amount=self.heloc_chunk_amount,
            monthly_payment=self.heloc_payment_per_month,
            repeat_chunks=self.repeat_chunks,
        )
        return loan, line


class StrategyChoiceResponse(BaseModel):
    key: str
    name: str
    kind: str
    total_months: int
    total_interest: Optional[float] = None
    comparison: Optional[ComparisonResponse] = None
    net_benefit: Optional[float] = None

    @classmethod
    def of(cls, choice: StrategyChoice) -> "StrategyChoiceResponse":
        return cls(
            key=choice.key,
            name=choice.name,
            kind=choice.kind,
            total_months=choice.total_months,
            total_interest=choice.total_interest,
            comparison=ComparisonResponse.of(choice.comparison) if choice.comparison else None,
            net_benefit=choice.net_benefit,
        )


class StrategyResponse(BaseModel):
    baseline: BaselineResponse
    extra_payment: ExtraPaymentResponse
    velocity: VelocityResponse
    investment: InvestmentResponse
    velocity_vs_extra: ComparisonResponse
    investment_net_benefit: float
    best_paydown: StrategyChoiceResponse
    best_overall: StrategyChoiceResponse


@app.get("/health", tags=["health"])
@limiter.exempt
def health() -> dict:
    return {"status": "ok"}


@app.post(
    "/v1/mortgages/baseline:calc",
    tags=["mortgage"],
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def calc_baseline(request: Request, body: LoanRequest, _=Depends(require_api_key)) -> BaselineResponse:
    result = simulate_baseline(body.to_params())
    return BaselineResponse(
        monthly_payment=float(result.monthly_payment),
        total_months=result.total_months,
        total_interest=float(result.total_interest),
        reached_month_cap=result.reached_month_cap,
    )


@app.post(
    "/v1/mortgages/extra-payment:calc",
    tags=["mortgage"],
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def calc_extra_payment(request: Request, body: ExtraPaymentRequest, _=Depends(require_api_key)) -> ExtraPaymentResponse:
    params = body.to_params()
    baseline = simulate_baseline(params)
    result = simulate_extra_payment(params, body.extra_payment)
    return _extra_response(result, compare_strategies(result, baseline))


@app.post(
    "/v1/mortgages/velocity:calc",
    tags=["mortgage"],
    responses={422: {"description": "HELOC payment cannot cover HELOC interest (negative amortization)"}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def calc_velocity(request: Request, body: VelocityRequest, _=Depends(require_api_key)) -> VelocityResponse:
    # NonAmortizingCreditLineError 由专用 handler 转成 422
    params = body.to_params()
    baseline = simulate_baseline(params)
    result = simulate_velocity_banking(params, body.to_line())
    return _velocity_response(result, compare_strategies(result, baseline))


@app.post(
    "/v1/investments/projection:calc",
    tags=["investment"],
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def calc_investment(request: Request, body: InvestmentRequest, _=Depends(require_api_key)) -> InvestmentResponse:
    result = project_investment(
        InvestmentParams(
            horizon_months=body.horizon_months,
            monthly_contribution=body.monthly_contribution,
            annual_return=body.annual_return,
        ),
        baseline_interest=body.baseline_interest,
        comparison_interest=body.comparison_interest,
    )
    return InvestmentResponse(
        total_months=result.total_months,
        total_invested=float(result.total_invested),
        total_value=float(result.total_value),
        investment_gains=float(result.investment_gains),
        net_benefit=float(result.net_benefit),
    )


@app.post(
    "/v1/strategies:compare",
    tags=["strategy"],
    responses={422: {"description": "HELOC payment cannot cover HELOC interest (negative amortization)"}},
)
@limiter.limit(DEFAULT_RATE_LIMIT)
def compare(request: Request, body: StrategyRequest, _=Depends(require_api_key)) -> StrategyResponse:
    report = _run_strategies(body)
    return StrategyResponse(
        baseline=BaselineResponse(
            monthly_payment=float(report.baseline.monthly_payment),
            total_months=report.baseline.total_months,
            total_interest=float(report.baseline.total_interest),
            reached_month_cap=report.baseline.reached_month_cap,
        ),
        extra_payment=_extra_response(report.extra_payment, report.extra_vs_baseline),
        velocity=_velocity_response(report.velocity, report.velocity_vs_baseline),
        investment=InvestmentResponse(
            total_months=report.investment.total_months,
            total_invested=float(report.investment.total_invested),
            total_value=float(report.investment.total_value),
            investment_gains=float(report.investment.investment_gains),
            net_benefit=float(report.investment.net_benefit),
        ),
        velocity_vs_extra=ComparisonResponse.of(report.velocity_vs_extra),
        investment_net_benefit=float(report.investment_net_benefit),
        best_paydown=StrategyChoiceResponse.of(report.best_paydown),
        best_overall=StrategyChoiceResponse.of(report.best_overall),
    )


@app.post(
    "/v1/strategies:export-xlsx",
    tags=["strategy"],
    responses={422: {"description": "HELOC payment cannot cover HELOC interest (negative amortization)"}},
)
@limiter.limit(EXPORT_RATE_LIMIT)
def export_xlsx(request: Request, body: StrategyRequest, _=Depends(require_api_key)):
    """导出四种方案汇总表（Excel），响应头返回最佳方案。"""
    report = _run_strategies(body)
    xlsx_bytes = _report_to_xlsx(report)
    _ensure_export_size(len(xlsx_bytes))

    return StreamingResponse(
        BytesIO(xlsx_bytes),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={
            "Content-Disposition": "attachment; filename=strategy_summary.xlsx; "
            f"filename*=UTF-8''{quote('还款策略对比.xlsx')}",
            "X-Best-Paydown": report.best_paydown.key,
            "X-Best-Overall": report.best_overall.key,
        },
    )


@app.post(
    "/v1/strategies:export-zip",
    tags=["strategy"],
    responses={422: {"description": "HELOC payment cannot cover HELOC interest (negative amortization)"}},
)
@limiter.limit(EXPORT_RATE_LIMIT)
def export_zip(request: Request, body: StrategyRequest, _=Depends(require_api_key)):
    """导出 ZIP（汇总 Excel + PDF 简报）。"""
    report = _run_strategies(body)
    loan, line = body.to_params()

    pdf_bytes = build_pdf(
        report=report,
        loan=loan,
        line=line,
        investment_return=body.investment_return_annual,
    )

    zip_buf = BytesIO()
    with zipfile.ZipFile(zip_buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("还款策略对比.xlsx", _report_to_xlsx(report))
        zf.writestr("还款策略-分析报告.pdf", pdf_bytes)
    zip_buf.seek(0)

    zip_bytes = zip_buf.getvalue()
    _ensure_export_size(len(zip_bytes))

    return StreamingResponse(
        BytesIO(zip_bytes),
        media_type="application/zip",
        headers={
            "Content-Disposition": "attachment; filename=strategy_report.zip; "
            f"filename*=UTF-8''{quote('还款策略分析报告.zip')}",
            "X-Interest-Saved-Best-Paydown": f"{float(report.best_paydown.comparison.interest_saved):.2f}",
            "X-Investment-Net-Benefit": f"{float(report.investment_net_benefit):.2f}",
        },
    )


def _run_strategies(body: StrategyRequest) -> AggregateReport:
    loan, line = body.to_params()
    return simulate_all_strategies(loan, line, investment_return=body.investment_return_annual)


def _extra_response(result, vs_baseline: Comparison) -> ExtraPaymentResponse:
    return ExtraPaymentResponse(
        monthly_payment=float(result.monthly_payment),
        base_monthly_payment=float(result.base_monthly_payment),
        extra_payment=float(result.extra_payment),
        total_months=result.total_months,
        total_interest=float(result.total_interest),
        reached_month_cap=result.reached_month_cap,
        vs_baseline=ComparisonResponse.of(vs_baseline),
    )


def _velocity_response(result, vs_baseline: Comparison) -> VelocityResponse:
    return VelocityResponse(
        baseline_monthly_payment=float(result.baseline_monthly_payment),
        total_months=result.total_months,
        mortgage_interest=float(result.mortgage_interest),
        heloc_interest=float(result.heloc_interest),
        total_interest=float(result.total_interest),
        chunks_drawn=result.chunks_drawn,
        reached_month_cap=result.reached_month_cap,
        vs_baseline=ComparisonResponse.of(vs_baseline),
    )


def _report_to_xlsx(report: AggregateReport) -> bytes:
    """将四种方案的汇总结果导出为 Excel（xlsx），返回二进制。只含汇总，不含逐月明细。"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Strategies"

    headers = ["方案", "月供/月投入", "结清月数", "总利息", "节省利息", "节省月数", "节省年数"]
    ws.append(headers)

    header_font = Font(bold=True, name="Arial", size=11, color="FFFFFF")
    body_font = Font(name="Arial", size=10)
    best_font = Font(bold=True, name="Arial", size=10, color="047857")
    header_fill = PatternFill("solid", fgColor="0F172A")
    alt_fill = PatternFill("solid", fgColor="F8FAFC")
    border = Border(bottom=Side(style="thin", color="E2E8F0"))
    align_right = Alignment(horizontal="right")
    align_center = Alignment(horizontal="center")

    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = align_center

    zero = Comparison(interest_saved=0.0, time_saved_months=0)
    rows = [
        (STRATEGY_BASELINE, report.baseline.monthly_payment, report.baseline.total_months, report.baseline.total_interest, zero),
        (STRATEGY_EXTRA_PAYMENT, report.extra_payment.monthly_payment, report.extra_payment.total_months, report.extra_payment.total_interest, report.extra_vs_baseline),
        (STRATEGY_VELOCITY, report.velocity.baseline_monthly_payment, report.velocity.total_months, report.velocity.total_interest, report.velocity_vs_baseline),
    ]

    for idx, (key, payment, months, interest, cmp) in enumerate(rows, start=2):
        ws.append([
            STRATEGY_CN[key],
            round(payment, 2),
            months,
            round(interest, 2),
            round(cmp.interest_saved, 2),
            cmp.time_saved_months,
            round(cmp.years_saved, 2),
        ])
        for col_idx in range(1, len(headers) + 1):
            cell = ws.cell(row=idx, column=col_idx)
            cell.font = best_font if key == report.best_paydown.key else body_font
            cell.alignment = align_right if col_idx > 1 else align_center
            if idx % 2 == 0:
                cell.fill = alt_fill
            cell.border = border

    # 定投与结论
    ws.append([])
    summary = [
        ("Velocity 房贷利息", round(report.velocity.mortgage_interest, 2)),
        ("Velocity HELOC 利息", round(report.velocity.heloc_interest, 2)),
        ("Velocity 提取次数", report.velocity.chunks_drawn),
        ("Velocity 相比每月多还节省利息", round(report.velocity_vs_extra.interest_saved, 2)),
        ("定投期限（月）", report.investment.total_months),
        ("定投累计投入", round(report.investment.total_invested, 2)),
        ("定投市值", round(report.investment.total_value, 2)),
        ("定投收益", round(report.investment.investment_gains, 2)),
        ("定投净收益（对比最佳还款方案）", round(report.investment_net_benefit, 2)),
        ("最佳还款方案", report.best_paydown.name),
        ("最佳总体方案", report.best_overall.name),
    ]
    for label, value in summary:
        ws.append([label, value])
        row_idx = ws.max_row
        ws.cell(row=row_idx, column=1).font = Font(bold=True, name="Arial", size=10)
        ws.cell(row=row_idx, column=2).font = body_font
        ws.cell(row=row_idx, column=2).alignment = align_right

    widths = [30, 16, 12, 16, 16, 12, 12]
    for i, w in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(i)].width = w

    buf = BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf.getvalue()


def _ensure_export_size(size_bytes: int) -> None:
    if size_bytes > MAX_EXPORT_BYTES:
        raise HTTPException(status_code=413, detail="export file too large")
