"""
Bikram Sambat (BS) display helpers.

Gregorian dates are converted with nepali-datetime's calendar tables and
rendered with Nepali month names and Devanagari digits, e.g.
"२०८१ बैशाख ०१". Used by templates only; nothing here is stored.
"""

from datetime import date, datetime

import nepali_datetime
from dateutil.relativedelta import relativedelta

NEPALI_MONTHS = [
    "बैशाख", "जेठ", "असार", "साउन", "भदौ", "असोज",
    "कार्तिक", "मंसिर", "पुष", "माघ", "फाल्गुन", "चैत",
]

_DEVANAGARI_DIGITS = str.maketrans("0123456789", "०१२३४५६७८९")

INVALID_DATE = "Invalid date"


def to_nepali_digits(value):
    """Render a number (or numeric string) with Devanagari digits."""
    return str(value).translate(_DEVANAGARI_DIGITS)


def _parse_ad_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    # Accept both YYYY-MM-DD and full ISO timestamps
    text = str(value).split("T")[0].strip()
    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError:
        return None


def to_bs_date(ad_date):
    """Convert a Gregorian date to a BS (year, month, day) tuple.

    Returns:
        tuple of ints, or None if the date is unparseable or outside the
        range covered by the conversion tables
    """
    parsed = _parse_ad_date(ad_date)
    if parsed is None:
        return None
    try:
        bs = nepali_datetime.date.from_datetime_date(parsed)
    except Exception as e:
        print(f"[WARNING] BS conversion failed for {parsed}: {e}")
        return None
    return bs.year, bs.month, bs.day


def format_bs_date(ad_date, include_day=True):
    """Format a Gregorian date as a BS string in Nepali.

    Returns "Invalid date" for anything that cannot be converted.
    """
    bs = to_bs_date(ad_date)
    if bs is None:
        return INVALID_DATE
    year, month, day = bs
    parts = [to_nepali_digits(year), NEPALI_MONTHS[month - 1]]
    if include_day:
        parts.append(to_nepali_digits(f"{day:02d}"))
    return " ".join(parts)


def bs_month_options(today=None, count=24):
    """Billing-period choices for the payment form.

    One option per Gregorian month starting at today's month. The value is
    the Gregorian "YYYY-MM" that gets stored; the label names the BS month
    in effect on the first of that month.
    """
    today = today or date.today()
    first = today.replace(day=1)
    options = []
    for i in range(count):
        month_start = first + relativedelta(months=i)
        bs = to_bs_date(month_start)
        if bs is None:
            label = month_start.strftime("%b %Y")
        else:
            label = (f"{NEPALI_MONTHS[bs[1] - 1]} {to_nepali_digits(bs[0])} "
                     f"({month_start.year})")
        options.append({
            "value": month_start.strftime("%Y-%m"),
            "label": label,
        })
    return options
