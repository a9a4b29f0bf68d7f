"""
Rent schedule calculator checks.

Covers end dates, frequency mapping, compounding increments and the
calendar-year breakdown.

Run:  pytest test_rent_schedule.py
"""

from datetime import date

import pytest
from dateutil.relativedelta import relativedelta

from rent_schedule import (
    TenancyTerms,
    build_yearly_breakdown,
    calculate_contract_end_date,
    effective_monthly_rent,
    get_frequency_months,
    payable_amount,
    terms_from_tenant,
)


def make_terms(start=date(2020, 1, 1), months=60, rent=10000.0, pct=10.0, interval=2, frequency=1):
    return TenancyTerms(
        contract_start_date=start,
        contract_duration_months=months,
        billing_frequency_months=frequency,
        base_monthly_rent=rent,
        increment_percent=pct,
        increment_interval_years=interval,
    )


# ================================================================
# Contract end date
# ================================================================

def test_end_date_is_inclusive():
    assert calculate_contract_end_date(date(2024, 1, 1), 1, 0) == date(2024, 12, 31)


def test_end_date_accepts_iso_string():
    assert calculate_contract_end_date("2024-01-01", 1, 0) == date(2024, 12, 31)


def test_end_date_months_carry_into_year():
    assert calculate_contract_end_date(date(2023, 6, 15), 0, 14) == date(2024, 8, 14)
    assert calculate_contract_end_date(date(2023, 6, 15), 1, 2) == date(2024, 8, 14)


def test_end_date_clamps_short_months():
    # Jan 31 + 1 month lands on Feb 29 (leap year), the contract ends the day before
    assert calculate_contract_end_date(date(2024, 1, 31), 0, 1) == date(2024, 2, 28)


def test_zero_duration_has_no_end_date():
    assert calculate_contract_end_date(date(2024, 5, 17), 0, 0) is None


def test_missing_start_has_no_end_date():
    assert calculate_contract_end_date(None, 1, 0) is None
    assert calculate_contract_end_date("not-a-date", 1, 0) is None


def test_end_date_never_before_start():
    start = date(2023, 3, 15)
    for months in range(1, 40):
        assert calculate_contract_end_date(start, 0, months) >= start


# ================================================================
# Frequency mapping
# ================================================================

@pytest.mark.parametrize("tag,months", [
    ("monthly", 1),
    ("bi-monthly", 2),
    ("tri-monthly", 3),
    ("semi-annually", 6),
    ("yearly", 12),
])
def test_frequency_months(tag, months):
    assert get_frequency_months(tag) == months


def test_unknown_frequency_falls_back_to_monthly():
    assert get_frequency_months("unknown-tag") == 1
    assert get_frequency_months(None) == 1


# ================================================================
# Effective monthly rent
# ================================================================

def test_compounding_example():
    terms = make_terms()
    assert effective_monthly_rent(terms, date(2021, 6, 1)) == pytest.approx(10000)
    # Exactly on the 2-year anniversary counts as elapsed
    assert effective_monthly_rent(terms, date(2022, 1, 1)) == pytest.approx(11000)
    assert effective_monthly_rent(terms, date(2024, 6, 1)) == pytest.approx(12100)


def test_day_before_anniversary_is_not_elapsed():
    terms = make_terms()
    assert effective_monthly_rent(terms, date(2021, 12, 31)) == pytest.approx(10000)


def test_zero_interval_keeps_rent_constant():
    terms = make_terms(interval=0)
    for k in range(60):
        assert effective_monthly_rent(terms, date(2020, 1, 1) + relativedelta(months=k)) == 10000


def test_zero_percent_keeps_rent_constant():
    terms = make_terms(pct=0)
    assert effective_monthly_rent(terms, date(2030, 1, 1)) == 10000


def test_effective_rent_non_decreasing():
    terms = make_terms(months=120, pct=7.5, interval=1)
    previous = 0
    for k in range(120):
        current = effective_monthly_rent(terms, date(2020, 1, 1) + relativedelta(months=k))
        assert current >= previous
        previous = current


# ================================================================
# Payable amount
# ================================================================

def test_payable_amount_uses_frequency():
    terms = make_terms(frequency=3)
    assert payable_amount(terms) == pytest.approx(30000)


def test_payable_amount_at_date_uses_effective_rent():
    terms = make_terms(frequency=3)
    assert payable_amount(terms, date(2022, 1, 1)) == pytest.approx(33000)


# ================================================================
# Yearly breakdown
# ================================================================

@pytest.mark.parametrize("duration", [1, 6, 12, 13, 24, 35])
@pytest.mark.parametrize("start", [date(2023, 1, 1), date(2023, 3, 1), date(2023, 3, 15), date(2023, 12, 31)])
def test_breakdown_months_sum_to_duration(start, duration):
    rows = build_yearly_breakdown(make_terms(start=start, months=duration))
    assert sum(row["months"] for row in rows) == duration


def test_single_year_breakdown():
    rows = build_yearly_breakdown(make_terms(start=date(2023, 3, 1), months=6, rent=8000))
    assert len(rows) == 1
    assert rows[0]["year_label"] == "2023"
    assert rows[0]["months"] == 6
    assert rows[0]["total_amount"] == pytest.approx(8000 * 6)


def test_cross_year_split():
    terms = make_terms(start=date(2023, 10, 1), months=6, rent=5000)
    assert terms.contract_end_date == date(2024, 3, 31)
    rows = build_yearly_breakdown(terms)
    assert [(r["year_label"], r["months"]) for r in rows] == [("2023", 3), ("2024", 3)]
    assert rows[0]["total_amount"] == pytest.approx(15000)
    assert rows[1]["total_amount"] == pytest.approx(15000)


def test_breakdown_applies_increments_per_year():
    rows = build_yearly_breakdown(make_terms())
    assert [r["year_label"] for r in rows] == ["2020", "2021", "2022", "2023", "2024"]
    assert [r["months"] for r in rows] == [12, 12, 12, 12, 12]
    totals = [r["total_amount"] for r in rows]
    assert totals == pytest.approx([120000, 120000, 132000, 132000, 145200])


def test_breakdown_one_row_per_calendar_year_touched():
    rows = build_yearly_breakdown(make_terms(start=date(2023, 12, 15), months=1, pct=0))
    assert [r["year_label"] for r in rows] == ["2023", "2024"]
    assert [r["months"] for r in rows] == [1, 0]


def test_breakdown_empty_without_duration():
    assert build_yearly_breakdown(make_terms(months=0)) == []


# ================================================================
# Mapping stored tenant records
# ================================================================

def test_terms_from_tenant_record():
    terms = terms_from_tenant({
        "contract_start_date": "2023-04-01",
        "contract_period_years": 2,
        "contract_period_months": "6",
        "monthly_rent": "15000.50",
        "rent_frequency": "semi-annually",
        "rent_increment_percentage": "5",
        "rent_increment_interval_years": 1,
    })
    assert terms == TenancyTerms(
        contract_start_date=date(2023, 4, 1),
        contract_duration_months=30,
        billing_frequency_months=6,
        base_monthly_rent=15000.5,
        increment_percent=5.0,
        increment_interval_years=1,
    )


def test_terms_from_tenant_coerces_bad_numbers_to_zero():
    terms = terms_from_tenant({
        "contract_start_date": "2023-01-01",
        "contract_period_years": "abc",
        "contract_period_months": "-3",
        "monthly_rent": None,
        "rent_frequency": "quarterly",
        "rent_increment_percentage": "",
    })
    assert terms.contract_duration_months == 0
    assert terms.billing_frequency_months == 1
    assert terms.base_monthly_rent == 0
    assert terms.increment_percent == 0
    assert terms.increment_interval_years == 0
    assert terms.contract_end_date is None


def test_terms_from_tenant_requires_start_date():
    assert terms_from_tenant({"contract_period_years": 1}) is None
    assert terms_from_tenant({"contract_start_date": "31/12/2023"}) is None
    assert terms_from_tenant(None) is None


# ================================================================
# Leap-day starts and out-of-range input
# ================================================================

def test_leap_day_anniversary_rolls_to_march_first():
    terms = make_terms(start=date(2024, 2, 29), months=36, interval=1)
    assert effective_monthly_rent(terms, date(2025, 2, 28)) == pytest.approx(10000)
    assert effective_monthly_rent(terms, date(2025, 3, 1)) == pytest.approx(11000)
    # Leap year again: the anniversary is Feb 29 itself
    assert effective_monthly_rent(terms, date(2028, 2, 29)) == pytest.approx(10000 * 1.1 ** 4)


def test_end_date_past_supported_range():
    assert calculate_contract_end_date(date(2024, 1, 1), 9000, 0) is None
    assert calculate_contract_end_date(date(9999, 6, 1), 1, 0) is None
    assert build_yearly_breakdown(make_terms(months=9000 * 12)) == []


def test_huge_interval_never_reaches_an_anniversary():
    terms = make_terms(interval=9000)
    assert effective_monthly_rent(terms, date(2024, 6, 1)) == 10000
    assert effective_monthly_rent(terms, date.max) == 10000


def test_huge_percent_does_not_raise():
    terms = make_terms(pct=1e308, interval=1)
    assert effective_monthly_rent(terms, date(2023, 6, 1)) == 0.0
    assert payable_amount(terms, date(2023, 6, 1)) == 0.0
