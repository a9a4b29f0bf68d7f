from datetime import date, datetime

from nepali_calendar import (
    INVALID_DATE,
    NEPALI_MONTHS,
    bs_month_options,
    format_bs_date,
    to_bs_date,
    to_nepali_digits,
)


def test_nepali_digits():
    assert to_nepali_digits(2081) == "२०८१"
    assert to_nepali_digits("07") == "०७"


def test_new_year_conversion():
    assert to_bs_date(date(2024, 4, 13)) == (2081, 1, 1)


def test_accepts_strings_and_timestamps():
    assert to_bs_date("2024-04-13") == (2081, 1, 1)
    assert to_bs_date("2024-04-13T09:30:00") == (2081, 1, 1)
    assert to_bs_date(datetime(2024, 4, 13, 9, 30)) == (2081, 1, 1)


def test_format_bs_date():
    assert format_bs_date(date(2024, 4, 13)) == "२०८१ बैशाख ०१"
    assert format_bs_date(date(2024, 4, 13), include_day=False) == "२०८१ बैशाख"


def test_invalid_input_is_reported_not_raised():
    assert to_bs_date("not-a-date") is None
    assert to_bs_date(None) is None
    assert format_bs_date("2024-13-45") == INVALID_DATE
    assert format_bs_date("") == INVALID_DATE


def test_month_options_start_at_current_month():
    options = bs_month_options(date(2024, 4, 20), count=3)
    assert [o["value"] for o in options] == ["2024-04", "2024-05", "2024-06"]
    # 1 April 2024 still falls in Chaitra 2080
    assert options[0]["label"] == "चैत २०८० (2024)"
    assert options[1]["label"] == "बैशाख २०८१ (2024)"


def test_month_options_cross_year_boundary():
    options = bs_month_options(date(2024, 11, 5), count=4)
    assert [o["value"] for o in options] == ["2024-11", "2024-12", "2025-01", "2025-02"]
    assert options[2]["label"].endswith("(2025)")


def test_month_options_default_count():
    options = bs_month_options(date(2024, 1, 1))
    assert len(options) == 24
    assert all(o["label"].split()[0] in NEPALI_MONTHS for o in options)
