"""Velocity Agent（房贷还款策略对比）Python 包。

对比四种方案：原方案、每月多还、Velocity Banking（HELOC 分块还款）、改为定投。

常用导入：
    from velocity_agent import LoanParams, CreditLineParams, simulate_all_strategies

调试运行：
    python -m velocity_agent

该调试入口会：
1) 用默认示例参数跑一次 simulate_all_strategies
2) 生成一份示例 PDF 到 output/ 目录
"""

from .calculator import (
    AggregateReport,
    BaselineResult,
    Comparison,
    CreditLineParams,
    ExtraPaymentResult,
    InvestmentParams,
    InvestmentResult,
    LoanParams,
    NonAmortizingCreditLineError,
    StrategyChoice,
    VelocityBankingResult,
    compare_strategies,
    project_investment,
    simulate_all_strategies,
    simulate_baseline,
    simulate_extra_payment,
    simulate_velocity_banking,
)

__all__ = [
    "AggregateReport",
    "BaselineResult",
    "Comparison",
    "CreditLineParams",
    "ExtraPaymentResult",
    "InvestmentParams",
    "InvestmentResult",
    "LoanParams",
    "NonAmortizingCreditLineError",
    "StrategyChoice",
    "VelocityBankingResult",
    "compare_strategies",
    "project_investment",
    "simulate_all_strategies",
    "simulate_baseline",
    "simulate_extra_payment",
    "simulate_velocity_banking",
]
