"""调试入口：python -m velocity_agent

用示例场景跑一次四种方案对比，打印关键结果，并生成一份 PDF 到 output/ 目录。
"""

import logging
import os

from velocity_agent.calculator import CreditLineParams, LoanParams, NonAmortizingCreditLineError, simulate_all_strategies
from velocity_agent.report import generate_pdf


logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("velocity_agent")


def main() -> int:
    loan = LoanParams(principal=500000, term_months=300, annual_rate=0.063)
    line = CreditLineParams(annual_rate=0.07, chunk_amount=15000, monthly_payment=3000, repeat_chunks=True)
    investment_return = 0.10

    try:
        report = simulate_all_strategies(loan, line, investment_return=investment_return)
    except NonAmortizingCreditLineError as e:
        logger.error("%s", e)
        return 1

    logger.info(
        "baseline: payment=%.2f months=%d interest=%.2f",
        report.baseline.monthly_payment,
        report.baseline.total_months,
        report.baseline.total_interest,
    )
    logger.info(
        "extra payment: months=%d interest=%.2f saved=%.2f",
        report.extra_payment.total_months,
        report.extra_payment.total_interest,
        report.extra_vs_baseline.interest_saved,
    )
    logger.info(
        "velocity: months=%d interest=%.2f (mortgage %.2f + heloc %.2f) saved=%.2f",
        report.velocity.total_months,
        report.velocity.total_interest,
        report.velocity.mortgage_interest,
        report.velocity.heloc_interest,
        report.velocity_vs_baseline.interest_saved,
    )
    logger.info(
        "investment: value=%.2f gains=%.2f net benefit=%.2f",
        report.investment.total_value,
        report.investment.investment_gains,
        report.investment_net_benefit,
    )
    logger.info("best paydown: %s, best overall: %s", report.best_paydown.name, report.best_overall.name)

    generate_pdf(
        report=report,
        loan=loan,
        line=line,
        investment_return=investment_return,
        output_dir=os.getenv("REPORT_OUTPUT_DIR", "output"),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
