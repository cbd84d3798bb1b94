"""贷款还款计划（等额本金 + 优惠利率 + 宽限期 + 违约金）Python 包。

常用导入：
    from loan_planner import LoanParams, PromotionalRate, PenaltyRate, build_schedule, summarize

调试运行：
    python -m loan_planner

该调试入口会：
1) 跑一组示例还款计划并打印汇总
2) 生成示例 Excel 与 PDF 到 output/ 目录
"""

from .calculator import (
    Affordability,
    LoanParams,
    LoanSummary,
    PenaltyRate,
    PromotionalRate,
    ScheduleEntry,
    assess_affordability,
    build_schedule,
    penalty_for_month,
    rate_for_month,
    summarize,
)

__all__ = [
    "Affordability",
    "LoanParams",
    "LoanSummary",
    "PenaltyRate",
    "PromotionalRate",
    "ScheduleEntry",
    "assess_affordability",
    "build_schedule",
    "penalty_for_month",
    "rate_for_month",
    "summarize",
]
