from __future__ import annotations

import logging
import os

from loan_planner.api import LOG_LEVEL, schedule_to_xlsx
from loan_planner.calculator import (
    LoanParams,
    PenaltyRate,
    PromotionalRate,
    assess_affordability,
    build_schedule,
    summarize,
)
from loan_planner.formatting import format_currency, format_percent_of_income
from loan_planner.report import generate_pdf, report_filename


logger = logging.getLogger("loan_planner")

SAMPLE = LoanParams(
    loan_amount=2_000_000_000,
    term_months=20 * 12,
    promotional_rates=[PromotionalRate(1, 1, 5.2), PromotionalRate(2, 3, 6.7)],
    floating_rate=10.0,
    monthly_income=60_000_000,
    penalty_rates=[PenaltyRate(3, 3), PenaltyRate(5, 1)],
)


def main(output_dir: str = "output") -> None:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    schedule = build_schedule(SAMPLE)
    summary = summarize(schedule, SAMPLE.promotional_rates)
    affordability = assess_affordability(summary, SAMPLE.monthly_income)

    print(f"Total principal     : {format_currency(summary.total_principal)}")
    print(f"Total interest      : {format_currency(summary.total_interest)}")
    print(f"Total payment       : {format_currency(summary.total_payment)}")
    print(f"Avg monthly payment : {format_currency(summary.avg_monthly_payment)}"
          f" ({format_percent_of_income(affordability.income_ratio)} of income)")
    print(f"Promotional window  : {summary.promotional_months} months,"
          f" avg {format_currency(summary.avg_monthly_payment_promotional)}")
    print(f"Floating window     : {summary.floating_months} months,"
          f" avg {format_currency(summary.avg_monthly_payment_floating)}")

    os.makedirs(output_dir, exist_ok=True)
    xlsx_path = os.path.join(output_dir, report_filename("xlsx"))
    with open(xlsx_path, "wb") as fh:
        fh.write(schedule_to_xlsx(SAMPLE, schedule, summary, affordability))
    pdf_path = os.path.join(output_dir, report_filename("pdf"))
    with open(pdf_path, "wb") as fh:
        fh.write(generate_pdf(params=SAMPLE, schedule=schedule, summary=summary, affordability=affordability))
    logger.info("wrote %s and %s", xlsx_path, pdf_path)


if __name__ == "__main__":
    main()
