import logging
from decimal import Decimal, ROUND_HALF_UP

from ..errors import ValidationFailed
from . import aggregator, llm_service

logger = logging.getLogger("roastmywallet.services.annual_report")

MIN_TRANSACTIONS = 3
TOP_CATEGORY_COUNT = 5
PROJECTION_YEARS = 5

REPORT_PROMPT = (
    "You are a brutally honest financial comedian writing someone's annual spending report. "
    "Respond ONLY with JSON: "
    '{"roast": "3-4 sentence roast of their year", '
    '"behavioralAnalysis": "2-3 sentences on their spending habits and patterns", '
    '"improvements": ["specific tip 1", "specific tip 2", "specific tip 3"]}'
)


def _fmt(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def compute_facts(expenses) -> dict:
    """The numeric part of the report. Deterministic for a given expense set."""
    totals = aggregator.category_totals(expenses)
    months = aggregator.month_totals(expenses)
    total_spend = sum(totals.values())

    worst_month = None
    for month, bucket in months.items():
        if worst_month is None or bucket["total"] > worst_month["amount"]:
            worst_month = {"month": month, "amount": bucket["total"]}

    months_tracked = len(months)
    avg_monthly = 0
    if months_tracked:
        avg_monthly = int((Decimal(total_spend) / months_tracked).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    return {
        "totalSpend": total_spend,
        "transactionCount": len(expenses),
        "monthsTracked": months_tracked,
        "avgMonthlySpend": avg_monthly,
        "projection5yr": avg_monthly * 12 * PROJECTION_YEARS,
        "worstMonth": worst_month,
        "top5Categories": [
            {"category": category, "amount": amount}
            for category, amount in aggregator.ranked_categories(totals)[:TOP_CATEGORY_COUNT]
        ],
    }


def fallback_narrative(facts: dict) -> dict:
    top = facts["top5Categories"][0]["category"] if facts["top5Categories"] else "Other"
    worst = facts["worstMonth"]["month"] if facts["worstMonth"] else "one month"
    return {
        "roast": (
            f"You spent {_fmt(facts['totalSpend'])} and most of it went to {top}. "
            f"At this rate you'll burn {_fmt(facts['projection5yr'])} in five years."
        ),
        "behavioralAnalysis": (
            f"Your spending averages {_fmt(facts['avgMonthlySpend'])} a month, "
            f"peaking in {worst}. {top} is where your habits are most expensive."
        ),
        "improvements": [
            f"Set a monthly cap for {top} and check it weekly.",
            f"Plan ahead for months like {worst} so they don't blow your budget.",
            "Cancel one subscription or recurring charge you barely use.",
        ],
    }


def generate_report(expenses) -> dict:
    if len(expenses) < MIN_TRANSACTIONS:
        raise ValidationFailed(
            f"You need at least {MIN_TRANSACTIONS} transactions to generate an annual report."
        )

    facts = compute_facts(expenses)
    fallback = fallback_narrative(facts)

    categories = ", ".join(f"{c['category']} {_fmt(c['amount'])}" for c in facts["top5Categories"])
    worst = facts["worstMonth"]
    context = (
        f"Total spent: {_fmt(facts['totalSpend'])} across {facts['transactionCount']} transactions\n"
        f"Top categories: {categories}\n"
        f"Worst month: {worst['month']} ({_fmt(worst['amount'])})\n"
        f"Average monthly spend: {_fmt(facts['avgMonthlySpend'])}\n"
        f"5-year projection if nothing changes: {_fmt(facts['projection5yr'])}"
    )
    data = llm_service.request_json(REPORT_PROMPT, context).value_or({})
    if not isinstance(data, dict):
        data = {}

    narrative = {}
    for key in ("roast", "behavioralAnalysis"):
        value = data.get(key)
        narrative[key] = value.strip() if isinstance(value, str) and value.strip() else fallback[key]

    improvements = data.get("improvements")
    if isinstance(improvements, list):
        improvements = [str(tip).strip() for tip in improvements if str(tip).strip()]
    else:
        improvements = []
    if len(improvements) < 3:
        improvements = fallback["improvements"]
    narrative["improvements"] = improvements[:3]

    return {**facts, **narrative}
