"""
Rent schedule calculations for a tenancy.

Pure functions only: contract end dates, payable amounts per billing
period, effective monthly rent with compounding increments, and the
calendar-year breakdown shown on the tenant detail page.
"""

import math
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta

FREQUENCY_MONTHS = {
    "monthly": 1,
    "bi-monthly": 2,
    "tri-monthly": 3,
    "semi-annually": 6,
    "yearly": 12,
}

FREQUENCY_LABELS = {
    "monthly": "Monthly",
    "bi-monthly": "Bi-Monthly (Every 2 months)",
    "tri-monthly": "Tri-Monthly (Every 3 months)",
    "semi-annually": "Semi-Annually (Every 6 months)",
    "yearly": "Yearly",
}


@dataclass(frozen=True)
class TenancyTerms:
    contract_start_date: date
    contract_duration_months: int
    billing_frequency_months: int = 1
    base_monthly_rent: float = 0.0
    increment_percent: float = 0.0
    increment_interval_years: int = 0

    @property
    def contract_end_date(self) -> Optional[date]:
        return calculate_contract_end_date(
            self.contract_start_date, 0, self.contract_duration_months
        )


def _to_date(value) -> Optional[date]:
    """Accept a date, datetime or 'YYYY-MM-DD' string. Returns None if unusable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def _to_non_negative_float(value) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(num) or num < 0:
        return 0.0
    return num


def _to_non_negative_int(value) -> int:
    return int(_to_non_negative_float(value))


def get_frequency_months(frequency: str) -> int:
    """Months per billing period for a frequency tag. Unknown tags bill monthly."""
    return FREQUENCY_MONTHS.get(frequency, 1)


def get_frequency_label(frequency: str) -> str:
    return FREQUENCY_LABELS.get(frequency, "Monthly")


def calculate_contract_end_date(start, years: int, months: int) -> Optional[date]:
    """Last day of a contract that runs `years` + `months` from `start`.

    The end date is inclusive: a one-year contract starting 2024-01-01
    ends 2024-12-31. Day-of-month clamps to the length of the target
    month before the final day is subtracted.

    Returns:
        date, or None when the start date is missing, the duration is zero
        or the end falls outside the supported date range
    """
    start_date = _to_date(start)
    if start_date is None or (not years and not months):
        return None
    try:
        return start_date + relativedelta(years=years, months=months) - relativedelta(days=1)
    except (ValueError, OverflowError):
        return None


def _anniversary(start: date, years: int) -> date:
    """Start date advanced by whole years. A Feb 29 start rolls to Mar 1 in non-leap years."""
    target = start + relativedelta(years=years)
    if start.month == 2 and start.day == 29 and target.day == 28:
        target += relativedelta(days=1)
    return target


def effective_monthly_rent(terms: TenancyTerms, at_date) -> float:
    """Monthly rent in effect on `at_date`, after compounding increments.

    One increment is applied for every anniversary (start date advanced by
    a whole number of increment intervals) that falls on or before
    `at_date`. Anniversaries past the last representable date never
    arrive. No rounding is applied; a result too large to represent
    comes back as 0.
    """
    base = terms.base_monthly_rent
    interval = terms.increment_interval_years
    pct = terms.increment_percent / 100
    if interval <= 0 or pct <= 0:
        return base

    on_date = _to_date(at_date)
    if on_date is None:
        return base
    intervals = 0
    while True:
        try:
            anniversary = _anniversary(terms.contract_start_date, interval * (intervals + 1))
        except (ValueError, OverflowError):
            break
        if anniversary > on_date:
            break
        intervals += 1

    try:
        rent = base * (1 + pct) ** intervals
    except OverflowError:
        return 0.0
    return rent if math.isfinite(rent) else 0.0


def payable_amount(terms: TenancyTerms, at_date=None) -> float:
    """Rent due per billing period.

    Uses the base monthly rent, or the effective rent on `at_date` when
    one is given.
    """
    if at_date is None:
        monthly = terms.base_monthly_rent
    else:
        monthly = effective_monthly_rent(terms, at_date)
    amount = monthly * terms.billing_frequency_months
    if not math.isfinite(amount):
        return 0.0
    return amount


def build_yearly_breakdown(terms: TenancyTerms) -> List[dict]:
    """Split a contract into calendar-year rows.

    Each contract month is counted in the calendar year its billing month
    starts in, so the months across all rows always add up to the
    contract duration. The rent for a row is sampled on the first day of
    the month in which the contract is first active that year.

    Returns:
        list of {"year_label", "months", "monthly_rent", "total_amount"},
        oldest year first. Empty when no end date can be computed.
    """
    start = terms.contract_start_date
    end = terms.contract_end_date
    if end is None:
        return []

    months_by_year = Counter(
        (start + relativedelta(months=k)).year
        for k in range(terms.contract_duration_months)
    )

    rows = []
    for year in range(start.year, end.year + 1):
        period_start = max(start, date(year, 1, 1))
        period_end = min(end, date(year, 12, 31))
        if period_start > period_end:
            continue
        months = months_by_year.get(year, 0)
        monthly = effective_monthly_rent(terms, period_start.replace(day=1))
        rows.append({
            "year_label": str(year),
            "months": months,
            "monthly_rent": monthly,
            "total_amount": monthly * months,
        })
    return rows


def terms_from_tenant(tenant: dict) -> Optional[TenancyTerms]:
    """Map a stored tenant record into TenancyTerms.

    Stored records carry optional, nullable and free-text values. Numbers
    that fail to parse or are negative become 0. Returns None when the
    record has no usable contract start date.
    """
    if not tenant:
        return None
    start = _to_date(tenant.get("contract_start_date"))
    if start is None:
        return None

    years = _to_non_negative_int(tenant.get("contract_period_years"))
    months = _to_non_negative_int(tenant.get("contract_period_months"))

    return TenancyTerms(
        contract_start_date=start,
        contract_duration_months=years * 12 + months,
        billing_frequency_months=get_frequency_months(tenant.get("rent_frequency")),
        base_monthly_rent=_to_non_negative_float(tenant.get("monthly_rent")),
        increment_percent=_to_non_negative_float(tenant.get("rent_increment_percentage")),
        increment_interval_years=_to_non_negative_int(tenant.get("rent_increment_interval_years")),
    )
