"""
Read-side aggregates over a user's persisted expenses.

All sums are integer cents.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional

from ..utils import month_key, month_start, shift_months, utcnow
from . import llm_service

logger = logging.getLogger("roastmywallet.services.aggregator")

RECENT_ROAST_COUNT = 5
SERIES_MONTHS = 12
FALLBACK_SAVINGS_RATE = 15  # percent

ADVICE_PROMPT = (
    "You are a blunt but helpful personal finance advisor. You get a user's spending "
    "totals per category (in dollars) and example merchants. "
    "Respond ONLY with JSON in this shape: "
    '{"advice": "2-3 sentence overall advice", "topCategory": "category name", '
    '"savingsPotential": <monthly savings in cents, integer>, '
    '"breakdown": [{"category": "name", "insight": "one sentence", '
    '"alternatives": ["cheaper option", "..."], "potentialSaving": <cents, integer>}]}'
)


def _newest_first(expenses):
    return sorted(expenses, key=lambda e: e.date, reverse=True)


def monthly_summary(expenses, now: Optional[datetime] = None) -> dict:
    start = month_start(now or utcnow())
    current = _newest_first([e for e in expenses if e.date >= start])
    return {
        "monthlyTotal": sum(e.amount for e in current),
        "recentRoasts": [e.roast for e in current[:RECENT_ROAST_COUNT]],
    }


def month_totals(expenses) -> Dict[str, dict]:
    """`YYYY-MM` -> {total, count}, in ascending month order."""
    totals: Dict[str, dict] = {}
    for expense in expenses:
        bucket = totals.setdefault(month_key(expense.date), {"total": 0, "count": 0})
        bucket["total"] += expense.amount
        bucket["count"] += 1
    return OrderedDict(sorted(totals.items()))


def monthly_series(expenses, now: Optional[datetime] = None) -> List[dict]:
    """Trailing twelve months; months without expenses are left out."""
    start = shift_months(now or utcnow(), -(SERIES_MONTHS - 1))
    recent = [e for e in expenses if e.date >= start]
    return [
        {"month": month, "total": bucket["total"], "count": bucket["count"]}
        for month, bucket in month_totals(recent).items()
    ]


def category_totals(expenses) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for expense in expenses:
        totals[expense.category] = totals.get(expense.category, 0) + expense.amount
    return totals


def category_merchants(expenses, per_category: int = 3) -> Dict[str, List[str]]:
    merchants: Dict[str, List[str]] = {}
    for expense in _newest_first(expenses):
        names = merchants.setdefault(expense.category, [])
        if expense.description not in names and len(names) < per_category:
            names.append(expense.description)
    return merchants


def ranked_categories(totals: Dict[str, int]) -> List[tuple]:
    # sorted() is stable, ties keep iteration order
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


def fallback_advice(totals: Dict[str, int]) -> dict:
    grand_total = sum(totals.values())
    ranked = ranked_categories(totals)
    top_category = ranked[0][0] if ranked else "None"
    breakdown = [
        {
            "category": category,
            "amount": amount,
            "insight": f"{category} accounts for ${amount / 100:,.2f} of your spending.",
            "alternatives": ["Set a monthly cap for this category", "Review recurring charges"],
            "potentialSaving": amount * FALLBACK_SAVINGS_RATE // 100,
        }
        for category, amount in ranked
    ]
    advice = (
        f"Your biggest spending category is {top_category}. "
        "Setting a budget there and cutting impulse buys could free up real money."
        if ranked else
        "Track a few expenses first and we'll tell you where your money is going."
    )
    return {
        "advice": advice,
        "topCategory": top_category,
        "savingsPotential": grand_total * FALLBACK_SAVINGS_RATE // 100,
        "breakdown": breakdown,
    }


def _as_cents(value, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)) and value >= 0:
        return int(round(value))
    return default


def financial_advice(expenses) -> dict:
    """One model call per request, falling back to a heuristic on any bad output."""
    totals = category_totals(expenses)
    fallback = fallback_advice(totals)
    if not totals:
        return fallback

    merchants = category_merchants(expenses)
    lines = [
        f"- {category}: ${amount / 100:,.2f} (e.g. {', '.join(merchants.get(category, []))})"
        for category, amount in ranked_categories(totals)
    ]
    result = llm_service.request_json(
        ADVICE_PROMPT,
        "Spending by category:\n" + "\n".join(lines),
        temperature=0.4,
    )
    data = result.value_or(None)
    if not isinstance(data, dict) or not isinstance(data.get("advice"), str) or not data["advice"].strip():
        logger.info("Financial advice fell back to heuristic")
        return fallback

    breakdown = []
    raw_breakdown = data.get("breakdown")
    if isinstance(raw_breakdown, list):
        for item in raw_breakdown:
            if not isinstance(item, dict) or not isinstance(item.get("category"), str):
                continue
            alternatives = item.get("alternatives")
            breakdown.append({
                "category": item["category"],
                "amount": totals.get(item["category"], 0),
                "insight": str(item.get("insight") or ""),
                "alternatives": [str(a) for a in alternatives] if isinstance(alternatives, list) else [],
                "potentialSaving": _as_cents(item.get("potentialSaving"), 0),
            })

    top_category = data.get("topCategory")
    return {
        "advice": data["advice"].strip(),
        "topCategory": top_category if isinstance(top_category, str) and top_category else fallback["topCategory"],
        "savingsPotential": _as_cents(data.get("savingsPotential"), fallback["savingsPotential"]),
        "breakdown": breakdown or fallback["breakdown"],
    }
