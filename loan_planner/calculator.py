from __future__ import annotations

from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple
import logging
import math


logger = logging.getLogger(__name__)

# 月供占收入比例（百分比）超过该值时给出预警
AFFORDABILITY_WARNING_RATIO = 70.0


@dataclass(frozen=True)
class PromotionalRate:
    """优惠利率区间（按贷款年度）。

    字段说明：
        from_year: 起始贷款年度（从 1 开始，含）。
        to_year: 结束贷款年度（含）。
        rate: 年利率（百分比），例如 5.2 表示 5.2%。
    """

    from_year: int
    to_year: int
    rate: float


@dataclass(frozen=True)
class PenaltyRate:
    """提前还款违约金档位。

    字段说明：
        before_year: 贷款年度 <= 该值时适用本档。
        penalty_rate: 违约金比例（占剩余本金的百分比）。
    """

    before_year: int
    penalty_rate: float


@dataclass(frozen=True)
class LoanParams:
    """贷款输入参数。

    字段说明：
        loan_amount: 贷款本金。
        term_months: 贷款总期数（月），例如 240。
        promotional_rates: 优惠利率区间；按列表顺序取第一个命中的区间。
        floating_rate: 不在任何优惠区间内的月份使用的浮动年利率（百分比）。
        monthly_income: 月收入；只用于收支与负担率展示，不参与还款计算。
        penalty_rates: 提前还款违约金档位，顺序不限。
        grace_period_years: 宽限期年数，宽限期内只付利息不还本金。
    """

    loan_amount: float
    term_months: int
    promotional_rates: Sequence[PromotionalRate] = ()
    floating_rate: float = 0.0
    monthly_income: float = 0.0
    penalty_rates: Sequence[PenaltyRate] = ()
    grace_period_years: int = 0

    def __post_init__(self) -> None:
        # 规则序列转成 tuple，参数对象可哈希，便于调用方做缓存
        object.__setattr__(self, "promotional_rates", tuple(self.promotional_rates))
        object.__setattr__(self, "penalty_rates", tuple(self.penalty_rates))

    @property
    def grace_period_months(self) -> int:
        return self.grace_period_years * 12


@dataclass(frozen=True)
class ScheduleEntry:
    """单期（月）还款计划明细。

    第 0 期是虚拟的期初行，只记录初始本金；实际还款从第 1 期到第 term_months 期。

    字段说明：
        month: 期数序号，期初行为 0。
        principal_start / principal_end: 本期还款前 / 后的剩余本金。
        principal_payment, interest_payment, total_payment: 本期归还本金、利息及合计。
        annual_rate: 本期适用年利率（百分比）。
        is_grace_period: 宽限期内（只付利息）为 True。
        accumulated_principal, accumulated_interest, total_paid_so_far: 自第 1 期起的累计值。
        monthly_remaining: 月收入减去本期还款，可能为负。
        accumulated_savings: monthly_remaining 的累计值。
        penalty_rate, penalty_amount: 本期还款后立即结清所需的违约金。
        total_settlement_cost: 已还总额 + 剩余本金 + 违约金。
    """

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


@dataclass(frozen=True)
class LoanSummary:
    """第 1..N 期的汇总。

    优惠期为第 1..max(to_year)*12 期，其余为浮动期；两段各自求平均月供。
    """

    total_principal: float
    total_interest: float
    total_payment: float
    avg_monthly_payment: float
    avg_monthly_payment_promotional: float
    avg_monthly_payment_floating: float
    promotional_months: int
    floating_months: int


@dataclass(frozen=True)
class Affordability:
    """还款负担（月供占收入比例）。

    字段说明：
        income_ratio: 全期平均月供占月收入的百分比。
        income_ratio_promotional / income_ratio_floating: 优惠期 / 浮动期的同一比例。
        remaining_promotional / remaining_floating: 月收入减去该阶段平均月供。
        exceeds_threshold: 全期比例超过 AFFORDABILITY_WARNING_RATIO。
    """

    income_ratio: float
    income_ratio_promotional: float
    income_ratio_floating: float
    remaining_promotional: float
    remaining_floating: float
    exceeds_threshold: bool


class _Totals(NamedTuple):
    # 逐月传递的累计值
    principal: float = 0.0
    interest: float = 0.0
    savings: float = 0.0


def monthly_rate(annual_rate: float) -> float:
    # 年利率百分比 -> 月利率小数。例如 12% => 0.01
    return annual_rate / 100.0 / 12.0


def loan_year(month: int) -> int:
    # 期数所在的贷款年度（第1年=1~12期，第2年=13~24期 ...）
    return math.ceil(month / 12)


def rate_for_month(month: int, promotional_rates: Sequence[PromotionalRate], floating_rate: float) -> float:
    """第 ``month`` 期适用的年利率。

    按给定顺序扫描优惠区间，第一个覆盖该贷款年度的区间生效，
    因此区间重叠时以声明顺序为准。不在任何区间内则使用 ``floating_rate``。
    """
    year = loan_year(month)
    for promo in promotional_rates:
        if promo.from_year <= year <= promo.to_year:
            return promo.rate
    return floating_rate


def penalty_for_month(month: int, penalty_rates: Sequence[PenaltyRate]) -> float:
    """第 ``month`` 期后结清的违约金比例（百分比）。

    按 ``before_year`` 从小到大检查，仍适用的最严档位生效；都不适用则为 0。
    """
    year = loan_year(month)
    for penalty in sorted(penalty_rates, key=lambda p: p.before_year):
        if year <= penalty.before_year:
            return penalty.penalty_rate
    return 0.0


def _opening_entry(params: LoanParams) -> ScheduleEntry:
    return ScheduleEntry(
        month=0,
        principal_start=params.loan_amount,
        principal_payment=0.0,
        interest_payment=0.0,
        total_payment=0.0,
        principal_end=params.loan_amount,
        annual_rate=0.0,
        is_grace_period=False,
        accumulated_principal=0.0,
        accumulated_interest=0.0,
        total_paid_so_far=0.0,
        monthly_remaining=params.monthly_income,
        accumulated_savings=0.0,
        penalty_rate=0.0,
        penalty_amount=0.0,
        total_settlement_cost=params.loan_amount,
    )


def _next_entry(
    params: LoanParams,
    month: int,
    principal_start: float,
    installment: float,
    totals: _Totals,
) -> Tuple[ScheduleEntry, _Totals]:
    annual_rate = rate_for_month(month, params.promotional_rates, params.floating_rate)
    is_grace_period = month <= params.grace_period_months

    # 等额本金：利息按剩余本金单利计算
    interest_payment = principal_start * monthly_rate(annual_rate)
    principal_payment = 0.0 if is_grace_period else installment
    total_payment = principal_payment + interest_payment
    monthly_remaining = params.monthly_income - total_payment

    totals = _Totals(
        principal=totals.principal + principal_payment,
        interest=totals.interest + interest_payment,
        savings=totals.savings + monthly_remaining,
    )
    # 最后一期的浮点误差截断到 0
    principal_end = max(0.0, principal_start - principal_payment)

    penalty_rate = penalty_for_month(month, params.penalty_rates)
    penalty_amount = principal_end * (penalty_rate / 100.0)

    entry = ScheduleEntry(
        month=month,
        principal_start=principal_start,
        principal_payment=principal_payment,
        interest_payment=interest_payment,
        total_payment=total_payment,
        principal_end=principal_end,
        annual_rate=annual_rate,
        is_grace_period=is_grace_period,
        accumulated_principal=totals.principal,
        accumulated_interest=totals.interest,
        total_paid_so_far=totals.principal + totals.interest,
        monthly_remaining=monthly_remaining,
        accumulated_savings=totals.savings,
        penalty_rate=penalty_rate,
        penalty_amount=penalty_amount,
        total_settlement_cost=totals.principal + totals.interest + principal_end + penalty_amount,
    )
    return entry, totals


def build_schedule(params: LoanParams) -> List[ScheduleEntry]:
    """生成等额本金还款计划。

    返回 ``term_months + 1`` 行：第 0 期期初行，之后每月一行。
    宽限期后每月归还固定本金；利息按当月适用利率对剩余本金计算。

    不校验输入。宽限期覆盖整个期限时每月应还本金为 0，本金始终不归还。
    """
    paying_months = params.term_months - params.grace_period_months
    installment = params.loan_amount / paying_months if paying_months > 0 else 0.0

    schedule: List[ScheduleEntry] = [_opening_entry(params)]
    totals = _Totals()
    for month in range(1, params.term_months + 1):
        entry, totals = _next_entry(params, month, schedule[-1].principal_end, installment, totals)
        schedule.append(entry)

    logger.debug(
        "built schedule: amount=%s months=%s grace=%s installment=%.2f interest=%.2f",
        params.loan_amount,
        params.term_months,
        params.grace_period_months,
        installment,
        totals.interest,
    )
    return schedule


def _average_payment(entries: List[ScheduleEntry]) -> float:
    if not entries:
        return 0.0
    return sum(e.total_payment for e in entries) / len(entries)


def summarize(schedule: Sequence[ScheduleEntry], promotional_rates: Sequence[PromotionalRate]) -> LoanSummary:
    """汇总 ``build_schedule`` 生成的还款计划：总额及优惠期 / 浮动期平均月供。"""
    payments = [e for e in schedule if e.month > 0]
    if not payments:
        return LoanSummary(
            total_principal=0.0,
            total_interest=0.0,
            total_payment=0.0,
            avg_monthly_payment=0.0,
            avg_monthly_payment_promotional=0.0,
            avg_monthly_payment_floating=0.0,
            promotional_months=0,
            floating_months=0,
        )

    total_principal = sum(e.principal_payment for e in payments)
    total_interest = sum(e.interest_payment for e in payments)
    total_payment = total_principal + total_interest

    max_promo_year = max((p.to_year for p in promotional_rates), default=0)
    promotional_months = max_promo_year * 12

    promotional = [e for e in payments if e.month <= promotional_months]
    floating = [e for e in payments if e.month > promotional_months]

    return LoanSummary(
        total_principal=total_principal,
        total_interest=total_interest,
        total_payment=total_payment,
        avg_monthly_payment=total_payment / len(payments),
        avg_monthly_payment_promotional=_average_payment(promotional),
        avg_monthly_payment_floating=_average_payment(floating),
        promotional_months=promotional_months,
        # 优惠区间可能超过贷款期限
        floating_months=max(0, len(payments) - promotional_months),
    )


def _income_ratio(payment: float, monthly_income: float) -> float:
    return payment / monthly_income * 100.0 if monthly_income > 0 else 0.0


def assess_affordability(
    summary: LoanSummary,
    monthly_income: float,
    warning_ratio: Optional[float] = None,
) -> Affordability:
    # 仅用于展示：收入不影响还款计划
    threshold = AFFORDABILITY_WARNING_RATIO if warning_ratio is None else warning_ratio
    income_ratio = _income_ratio(summary.avg_monthly_payment, monthly_income)
    return Affordability(
        income_ratio=income_ratio,
        income_ratio_promotional=_income_ratio(summary.avg_monthly_payment_promotional, monthly_income),
        income_ratio_floating=_income_ratio(summary.avg_monthly_payment_floating, monthly_income),
        remaining_promotional=monthly_income - summary.avg_monthly_payment_promotional,
        remaining_floating=monthly_income - summary.avg_monthly_payment_floating,
        exceeds_threshold=monthly_income > 0 and income_ratio > threshold,
    )
