import math
from typing import Iterable

from report_models import AggregateRow, PartialRow, ValidationError


def check_amount(value: float, what: str) -> float:
    """Reject NaN, infinities and negatives instead of coercing them to zero."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{what} is missing")
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise ValidationError(f"{what} is not a finite number")
    if value < 0:
        raise ValidationError(f"{what} is negative ({value})")
    return value


def _pct(part: float, whole: float) -> float:
    if whole <= 0:
        return 0.0
    return part / whole * 100


def aggregate(row: PartialRow) -> AggregateRow:
    """
    Derive the presentation row. Sums stay at full precision up to this point;
    every figure is rounded to 2 decimals exactly once, here.
    """
    total_hours = check_amount(row.total_hours, f"{row.name}: total hours")
    billable_hours = check_amount(row.billable_hours, f"{row.name}: billable hours")
    billed_amount = check_amount(row.billed_amount, f"{row.name}: billed amount")
    budget = max(0.0, check_amount(row.budget, f"{row.name}: budget"))
    budget_spent = max(0.0, check_amount(row.budget_spent, f"{row.name}: budget spent"))
    budget_remaining = max(0.0, budget - budget_spent)

    return AggregateRow(
        id=row.id,
        name=row.name,
        category=row.category,
        total_hours=round(total_hours, 2),
        billable_hours=round(billable_hours, 2),
        billed_amount=round(billed_amount, 2),
        budget=round(budget, 2),
        budget_spent=round(budget_spent, 2),
        budget_remaining=round(budget_remaining, 2),
        budget_used_pct=round(_pct(budget_spent, budget), 2),
        budget_percent_complete=round(_pct(billed_amount, budget), 2),
        support_hours=row.support_hours,
    )


def sort_descending_by_hours(rows: Iterable[AggregateRow]) -> list[AggregateRow]:
    # sorted() is stable: equal hours keep declaration order
    return sorted(rows, key=lambda r: -r.total_hours)
