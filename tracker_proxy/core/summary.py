import calendar
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

FILTERS = ("all", "month", "week")
TOP_N = 5
RECENT_N = 10


def _field(record, name):
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _parse_amount(value):
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip() or "0")
    except InvalidOperation:
        return Decimal("0")


def _parse_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).strip()).date()
    except ValueError:
        return None


def _as_amount(value):
    return float(value.quantize(Decimal("0.01")))


def _as_share(total, total_debit):
    if total_debit <= 0:
        return 0.0
    return float((total / total_debit).quantize(Decimal("0.0001")))


def _one_month_before(day):
    year, month = (day.year, day.month - 1) if day.month > 1 else (day.year - 1, 12)
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))


def filter_cutoff(period, now=None):
    """Earliest transaction_date kept by ``period``; None means no cutoff."""
    if period not in FILTERS:
        raise ValueError(f"filter must be one of {FILTERS}, got {period!r}")
    today = (now or datetime.now(timezone.utc)).date()
    if period == "month":
        return _one_month_before(today)
    if period == "week":
        return today - timedelta(days=7)
    return None


def apply_filter(transactions, period, now=None):
    cutoff = filter_cutoff(period, now)
    if cutoff is None:
        return list(transactions)
    kept = []
    for record in transactions:
        day = _parse_date(_field(record, "transaction_date"))
        if day is not None and day >= cutoff:
            kept.append(record)
    return kept


def _ranked(totals, total_debit):
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))[:TOP_N]
    return [
        {"name": name, "amount": _as_amount(amount), "share": _as_share(amount, total_debit)}
        for name, amount in ordered
    ]


def summarize(transactions, period="all", now=None):
    """
    Totals for the dashboard.

    Only debits feed the category and merchant rankings. ``share`` is the
    fraction of total_debit and is 0.0 when there is no debit at all.
    """
    selected = apply_filter(transactions, period, now)

    total_credit = Decimal("0")
    total_debit = Decimal("0")
    by_category = {}
    by_merchant = {}

    for record in selected:
        amount = _parse_amount(_field(record, "amount"))
        kind = _field(record, "type")
        if kind == "credit":
            total_credit += amount
        elif kind == "debit":
            total_debit += amount
            category = _field(record, "category")
            if category:
                by_category[category] = by_category.get(category, Decimal("0")) + amount
            merchant = (_field(record, "merchant") or "").strip()
            if merchant:
                by_merchant[merchant] = by_merchant.get(merchant, Decimal("0")) + amount

    recent = sorted(
        selected,
        key=lambda record: _parse_date(_field(record, "transaction_date")) or date.min,
        reverse=True,
    )[:RECENT_N]

    return {
        "filter": period,
        "count": len(selected),
        "total_credit": _as_amount(total_credit),
        "total_debit": _as_amount(total_debit),
        "balance": _as_amount(total_credit - total_debit),
        "category_totals": _ranked(by_category, total_debit),
        "merchant_totals": _ranked(by_merchant, total_debit),
        "recent": recent,
    }
