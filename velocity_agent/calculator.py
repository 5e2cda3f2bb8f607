from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging
import math


logger = logging.getLogger(__name__)

# 单次模拟最多推演的月数（安全上限，正常参数不会触达）
MAX_MONTHS_SIMULATED = 1200
# 余额低于“初始金额 × 该值”视为已结清，吸收浮点残差（残差随本金放大）
BALANCE_EPSILON = 1e-6
# 信用额度余额超过该值且月供覆盖不了利息时，判定为负摊销
NEGATIVE_AMORTIZATION_THRESHOLD = 0.01

STRATEGY_BASELINE = "baseline"
STRATEGY_EXTRA_PAYMENT = "extra_payment"
STRATEGY_VELOCITY = "velocity"
STRATEGY_INVESTMENT = "investment"

STRATEGY_NAMES = {
    STRATEGY_BASELINE: "Baseline",
    STRATEGY_EXTRA_PAYMENT: "Extra Payment",
    STRATEGY_VELOCITY: "Velocity Banking",
    STRATEGY_INVESTMENT: "Investment Strategy",
}


class NonAmortizingCreditLineError(ValueError):
    """信用额度（HELOC）月供不足以覆盖当月利息，余额永远还不清。

    该错误在模拟过程中发现，携带足够的上下文让调用方提示用户“提高 HELOC 月供”。

    字段说明：
        month: 触发错误的月份序号（从 1 开始）。
        heloc_balance: 当月计息前的信用额度余额。
        heloc_interest: 当月信用额度利息。
        heloc_payment: 用户设定的信用额度固定月供。
    """

    def __init__(self, *, month: int, heloc_balance: float, heloc_interest: float, heloc_payment: float):
        self.month = month
        self.heloc_balance = heloc_balance
        self.heloc_interest = heloc_interest
        self.heloc_payment = heloc_payment
        super().__init__(
            "HELOC payment is too low to pay down the balance (negative amortization). "
            f"Month {month}: payment {heloc_payment:.2f} <= interest {heloc_interest:.2f}. "
            "Increase HELOC payment."
        )

    @property
    def minimum_payment(self) -> float:
        # 月供必须严格大于当月利息
        return self.heloc_interest

    def to_dict(self) -> dict:
        return {
            "error": "non_amortizing_credit_line",
            "message": str(self),
            "month": self.month,
            "heloc_balance": self.heloc_balance,
            "heloc_interest": self.heloc_interest,
            "heloc_payment": self.heloc_payment,
            "minimum_payment": self.minimum_payment,
        }


@dataclass(frozen=True)
class LoanParams:
    """房贷输入参数。

    字段说明：
        principal: 当前贷款本金/余额。
        term_months: 剩余期数（月），例如 300。
        annual_rate: 年利率（小数），例如 0.063 表示 6.3%。
        max_months: 模拟月数安全上限，默认 1200。
    """

    principal: float
    term_months: int
    annual_rate: float
    max_months: int = MAX_MONTHS_SIMULATED


@dataclass(frozen=True)
class CreditLineParams:
    """信用额度（HELOC）相关输入。

    字段说明：
        annual_rate: HELOC 年利率（小数），例如 0.07。
        chunk_amount: 每次从 HELOC 提取并一次性还入房贷本金的金额。
        monthly_payment: 每月固定偿还 HELOC 的金额（同时作为“每月多还”方案的追加额）。
        repeat_chunks: HELOC 还清后是否再次提取。
    """

    annual_rate: float
    chunk_amount: float
    monthly_payment: float
    repeat_chunks: bool = False


@dataclass(frozen=True)
class InvestmentParams:
    """定投参数：期限（月）、每月投入、预期年化收益（小数）。"""

    horizon_months: int
    monthly_contribution: float
    annual_return: float


@dataclass(frozen=True)
class BaselineResult:
    """原方案（不提前还款）结果。"""

    monthly_payment: float
    total_months: int
    total_interest: float
    reached_month_cap: bool = False


@dataclass(frozen=True)
class ExtraPaymentResult:
    """每月多还固定本金方案结果。

    monthly_payment 为“原月供 + 名义追加额”，即每月承诺的现金流出，
    最后一期实际追加额可能更少，但这里不做修正。
    """

    monthly_payment: float
    base_monthly_payment: float
    extra_payment: float
    total_months: int
    total_interest: float
    reached_month_cap: bool = False


@dataclass(frozen=True)
class VelocityBankingResult:
    """Velocity Banking（HELOC 分块还款）结果。

    字段说明：
        baseline_monthly_payment: 房贷固定月供（按原本金/期限/利率计算）。
        total_months: 房贷与 HELOC 全部结清所需月数。
        mortgage_interest: 房贷部分累计利息。
        heloc_interest: HELOC 部分累计利息。
        total_interest: 合计利息。
        chunks_drawn: 共提取 HELOC 的次数（含初始一次）。
        reached_month_cap: 是否因触达安全上限而终止。
    """

    baseline_monthly_payment: float
    total_months: int
    mortgage_interest: float
    heloc_interest: float
    total_interest: float
    chunks_drawn: int = 0
    reached_month_cap: bool = False


@dataclass(frozen=True)
class InvestmentResult:
    """不还贷、改为定投的结果。

    net_benefit = 投资收益 - 对比还款方案节省的利息；> 0 说明定投更划算。
    """

    total_months: int
    total_invested: float
    total_value: float
    investment_gains: float
    net_benefit: float


@dataclass(frozen=True)
class Comparison:
    """两个方案之间的对比：节省利息与节省月数（正数表示 this 更优）。"""

    interest_saved: float
    time_saved_months: int

    @property
    def years_saved(self) -> float:
        return self.time_saved_months / 12


@dataclass(frozen=True)
class StrategyChoice:
    """胜出方案。

    字段说明：
        key: extra_payment / velocity / investment。
        name: 展示名称。
        kind: paydown（还款类）或 investment（定投）。
        total_months: 该方案持续月数。
        total_interest: 还款类方案的总利息；定投方案为 None。
        comparison: 还款类方案相对原方案的对比；定投方案为 None。
        net_benefit: 定投方案相对最佳还款方案的净收益；还款类为 None。
    """

    key: str
    name: str
    kind: str
    total_months: int
    total_interest: Optional[float] = None
    comparison: Optional[Comparison] = None
    net_benefit: Optional[float] = None


@dataclass(frozen=True)
class AggregateReport:
    """四种方案的汇总结果与两两对比。"""

    baseline: BaselineResult
    extra_payment: ExtraPaymentResult
    velocity: VelocityBankingResult
    investment: InvestmentResult
    extra_vs_baseline: Comparison
    velocity_vs_baseline: Comparison
    velocity_vs_extra: Comparison
    investment_net_benefit: float
    best_paydown: StrategyChoice
    best_overall: StrategyChoice


class _Balance:
    """单个余额（房贷或 HELOC）在一次模拟中的可变状态。"""

    __slots__ = ("balance", "rate", "interest", "tolerance")

    def __init__(self, balance: float, rate: float, scale: float):
        self.balance = balance
        self.rate = rate
        self.interest = 0.0
        self.tolerance = _tolerance(scale)


def monthly_rate(annual_rate: float) -> float:
    # 年利率小数 -> 月利率。例如 0.063 => 0.00525
    return annual_rate / 12.0


def annuity_payment(principal: float, rate: float, months: int) -> float:
    if months <= 0:
        return 0.0
    if rate == 0:
        return principal / months
    return principal * rate / (1 - math.pow(1 + rate, -months))


def _tolerance(scale: float) -> float:
    return BALANCE_EPSILON * max(1.0, abs(scale))


def _settle(balance: float, tolerance: float) -> float:
    if balance < tolerance:
        return 0.0
    return balance


def _scheduled_cap(payment: float, month: int, term_months: int) -> float:
    # 第 term_months 期为尾款：结清全部剩余本息，不受月供限制
    if month >= term_months:
        return math.inf
    return payment


def _step(state: _Balance, payment_cap: float) -> float:
    # 计息 -> 还款（不超过本息合计）-> 扣减本金，返回本期利息
    interest = state.balance * state.rate
    payment = min(payment_cap, state.balance + interest)
    state.interest += interest
    state.balance = _settle(state.balance - (payment - interest), state.tolerance)
    return interest


def _warn_cap(strategy: str, months: int) -> None:
    logger.warning("%s simulation stopped at the %d-month safety cap; parameters may not amortize", strategy, months)


def simulate_baseline(params: LoanParams) -> BaselineResult:
    """原方案：固定利率、固定期限等额本息，不做任何提前还款。"""
    if params.principal <= 0 or params.term_months <= 0:
        return BaselineResult(monthly_payment=0.0, total_months=0, total_interest=0.0)

    rate = monthly_rate(params.annual_rate)
    payment = annuity_payment(params.principal, rate, params.term_months)

    mortgage = _Balance(params.principal, rate, params.principal)
    months = 0
    while mortgage.balance > 0 and months < params.max_months:
        months += 1
        _step(mortgage, _scheduled_cap(payment, months, params.term_months))

    capped = mortgage.balance > 0
    if capped:
        _warn_cap(STRATEGY_BASELINE, months)
    logger.debug("baseline: payment=%.2f months=%d interest=%.2f", payment, months, mortgage.interest)
    return BaselineResult(
        monthly_payment=payment,
        total_months=months,
        total_interest=mortgage.interest,
        reached_month_cap=capped,
    )


def simulate_extra_payment(params: LoanParams, extra_payment: float) -> ExtraPaymentResult:
    """每月多还方案：原月供之外，每月额外归还固定本金。

    额外本金被截断到“本期常规还款后剩余的本金”，余额不会为负。
    extra_payment 为 0 时结果与原方案完全一致。
    """
    if params.principal <= 0 or params.term_months <= 0:
        return ExtraPaymentResult(
            monthly_payment=0.0,
            base_monthly_payment=0.0,
            extra_payment=0.0,
            total_months=0,
            total_interest=0.0,
        )

    rate = monthly_rate(params.annual_rate)
    payment = annuity_payment(params.principal, rate, params.term_months)

    balance = params.principal
    tolerance = _tolerance(params.principal)
    total_interest = 0.0
    months = 0
    while balance > 0 and months < params.max_months:
        months += 1
        interest = balance * rate
        regular = min(_scheduled_cap(payment, months, params.term_months), balance + interest)
        principal_from_regular = regular - interest
        extra_principal = max(0.0, min(extra_payment, balance - principal_from_regular))

        total_interest += interest
        balance = _settle(balance - (principal_from_regular + extra_principal), tolerance)

    capped = balance > 0
    if capped:
        _warn_cap(STRATEGY_EXTRA_PAYMENT, months)
    logger.debug("extra payment: extra=%.2f months=%d interest=%.2f", extra_payment, months, total_interest)
    return ExtraPaymentResult(
        monthly_payment=payment + extra_payment,
        base_monthly_payment=payment,
        extra_payment=extra_payment,
        total_months=months,
        total_interest=total_interest,
        reached_month_cap=capped,
    )


def simulate_velocity_banking(loan: LoanParams, line: CreditLineParams) -> VelocityBankingResult:
    """Velocity Banking：用 HELOC 提取整块资金提前还房贷本金，再按月偿还 HELOC。

    每月顺序：
    1) 房贷按原月供计息还款
    2) HELOC 计息并按固定月供还款；月供 <= 利息时抛出 NonAmortizingCreditLineError
    3) 开启 repeat_chunks 时，HELOC 清零且房贷未清，则再次提取一块

    chunk_amount <= 0 时直接返回原方案结果（合计利息 = 房贷利息，HELOC 利息为 0）。
    """
    baseline = simulate_baseline(loan)

    if line.chunk_amount <= 0:
        return VelocityBankingResult(
            baseline_monthly_payment=baseline.monthly_payment,
            total_months=baseline.total_months,
            mortgage_interest=baseline.total_interest,
            heloc_interest=0.0,
            total_interest=baseline.total_interest,
            reached_month_cap=baseline.reached_month_cap,
        )

    if loan.principal <= 0 or loan.term_months <= 0:
        return VelocityBankingResult(
            baseline_monthly_payment=0.0,
            total_months=0,
            mortgage_interest=0.0,
            heloc_interest=0.0,
            total_interest=0.0,
        )

    mortgage = _Balance(loan.principal, monthly_rate(loan.annual_rate), loan.principal)
    heloc = _Balance(0.0, monthly_rate(line.annual_rate), line.chunk_amount)

    # 初始提取：月份 1 开始前先打一块本金
    chunk = min(line.chunk_amount, mortgage.balance)
    mortgage.balance = _settle(mortgage.balance - chunk, mortgage.tolerance)
    heloc.balance += chunk
    chunks_drawn = 1

    months = 0
    while (mortgage.balance > 0 or heloc.balance > 0) and months < loan.max_months:
        months += 1

        if mortgage.balance > 0:
            _step(mortgage, _scheduled_cap(baseline.monthly_payment, months, loan.term_months))

        if heloc.balance > 0:
            interest = heloc.balance * heloc.rate
            if line.monthly_payment <= interest and heloc.balance > NEGATIVE_AMORTIZATION_THRESHOLD:
                logger.warning(
                    "velocity: HELOC payment %.2f cannot cover interest %.2f on balance %.2f (month %d)",
                    line.monthly_payment,
                    interest,
                    heloc.balance,
                    months,
                )
                raise NonAmortizingCreditLineError(
                    month=months,
                    heloc_balance=heloc.balance,
                    heloc_interest=interest,
                    heloc_payment=line.monthly_payment,
                )
            _step(heloc, line.monthly_payment)

        if line.repeat_chunks and heloc.balance == 0 and mortgage.balance > 0:
            chunk = min(line.chunk_amount, mortgage.balance)
            mortgage.balance = _settle(mortgage.balance - chunk, mortgage.tolerance)
            heloc.balance += chunk
            chunks_drawn += 1

    capped = mortgage.balance > 0 or heloc.balance > 0
    if capped:
        _warn_cap(STRATEGY_VELOCITY, months)
    logger.debug(
        "velocity: months=%d mortgage_interest=%.2f heloc_interest=%.2f chunks=%d",
        months,
        mortgage.interest,
        heloc.interest,
        chunks_drawn,
    )
    return VelocityBankingResult(
        baseline_monthly_payment=baseline.monthly_payment,
        total_months=months,
        mortgage_interest=mortgage.interest,
        heloc_interest=heloc.interest,
        total_interest=mortgage.interest + heloc.interest,
        chunks_drawn=chunks_drawn,
        reached_month_cap=capped,
    )


def project_investment(
    params: InvestmentParams,
    baseline_interest: float,
    comparison_interest: float,
) -> InvestmentResult:
    """定投对比：把每月多还的钱改为月末定投，按月复利。

    net_benefit 与“原方案利息 - comparison_interest”比较，
    comparison_interest 通常是最佳还款方案的总利息。
    """
    horizon = params.horizon_months
    contribution = params.monthly_contribution
    if horizon <= 0 or contribution <= 0:
        return InvestmentResult(
            total_months=horizon,
            total_invested=0.0,
            total_value=0.0,
            investment_gains=0.0,
            net_benefit=0.0,
        )

    rate = monthly_rate(params.annual_return)
    value = 0.0
    for _ in range(horizon):
        value = value * (1 + rate) + contribution

    invested = contribution * horizon
    gains = value - invested
    interest_saved = baseline_interest - comparison_interest
    return InvestmentResult(
        total_months=horizon,
        total_invested=invested,
        total_value=value,
        investment_gains=gains,
        net_benefit=gains - interest_saved,
    )


def compare_strategies(this, other) -> Comparison:
    # this 相对 other 节省的利息与月数；两者需有 total_interest / total_months
    return Comparison(
        interest_saved=other.total_interest - this.total_interest,
        time_saved_months=other.total_months - this.total_months,
    )


def simulate_all_strategies(
    loan: LoanParams,
    line: CreditLineParams,
    investment_return: float = 0.0,
) -> AggregateReport:
    """主流程：原方案 / 每月多还 / Velocity Banking / 定投 四种方案对比。

    1) 三种还款方案各自模拟，HELOC 月供同时作为“每月多还”的追加额
    2) 两两对比，节省利息更多者为最佳还款方案（持平时选每月多还）
    3) 以最佳还款方案的期限和总利息为基准模拟定投
    4) 定投净收益 > 0 则定投为最佳总体方案，否则为最佳还款方案
    """
    baseline = simulate_baseline(loan)
    extra = simulate_extra_payment(loan, line.monthly_payment)
    velocity = simulate_velocity_banking(loan, line)

    extra_vs_baseline = compare_strategies(extra, baseline)
    velocity_vs_baseline = compare_strategies(velocity, baseline)
    velocity_vs_extra = compare_strategies(velocity, extra)

    if velocity_vs_baseline.interest_saved > extra_vs_baseline.interest_saved:
        best_paydown = StrategyChoice(
            key=STRATEGY_VELOCITY,
            name=STRATEGY_NAMES[STRATEGY_VELOCITY],
            kind="paydown",
            total_months=velocity.total_months,
            total_interest=velocity.total_interest,
            comparison=velocity_vs_baseline,
        )
    else:
        best_paydown = StrategyChoice(
            key=STRATEGY_EXTRA_PAYMENT,
            name=STRATEGY_NAMES[STRATEGY_EXTRA_PAYMENT],
            kind="paydown",
            total_months=extra.total_months,
            total_interest=extra.total_interest,
            comparison=extra_vs_baseline,
        )

    investment = project_investment(
        InvestmentParams(
            horizon_months=best_paydown.total_months,
            monthly_contribution=line.monthly_payment,
            annual_return=investment_return,
        ),
        baseline_interest=baseline.total_interest,
        comparison_interest=best_paydown.total_interest,
    )

    if investment.net_benefit > 0:
        best_overall = StrategyChoice(
            key=STRATEGY_INVESTMENT,
            name=STRATEGY_NAMES[STRATEGY_INVESTMENT],
            kind="investment",
            total_months=investment.total_months,
            net_benefit=investment.net_benefit,
        )
    else:
        best_overall = best_paydown

    logger.info(
        "strategies compared: best paydown=%s best overall=%s",
        best_paydown.key,
        best_overall.key,
    )
    return AggregateReport(
        baseline=baseline,
        extra_payment=extra,
        velocity=velocity,
        investment=investment,
        extra_vs_baseline=extra_vs_baseline,
        velocity_vs_baseline=velocity_vs_baseline,
        velocity_vs_extra=velocity_vs_extra,
        investment_net_benefit=investment.net_benefit,
        best_paydown=best_paydown,
        best_overall=best_overall,
    )
