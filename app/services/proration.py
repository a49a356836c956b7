"""Proration arithmetic for mid-cycle plan changes.

The customer is credited for the unused part of the current period on the
old plan and charged for the same span on the new plan. Amounts are
``Decimal`` rounded half-up to cents per line item; a breakdown's total is
the sum of its rounded items so the two always reconcile.
"""

from __future__ import annotations

from calendar import monthrange
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from app.models.billing import Plan, PlanInterval
from app.schemas.proration import ProrationBreakdown, ProrationLineItem, ProrationResult
from app.services.common import as_utc, round_money

RATE_QUANT = Decimal("0.000001")


@dataclass(frozen=True)
class ChargeComponent:
    """A charge billed for the current period (base plan or add-on)."""

    description: str
    amount: Decimal
    tax_amount: Decimal = Decimal("0.00")


def _add_months(value: datetime, months: int) -> datetime:
    total = value.month - 1 + months
    year = value.year + total // 12
    month = total % 12 + 1
    day = min(value.day, monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def days_between(start: datetime | date, end: datetime | date) -> int:
    """Whole days from ``start`` to ``end``; negative when end is earlier."""
    return (as_utc(end) - as_utc(start)).days


def calculate_cycle_days(interval: PlanInterval, reference: datetime | date) -> int:
    """Length in days of one billing cycle starting at ``reference``.

    Months and years follow the calendar, so February and leap years count
    their real length.
    """
    if interval == PlanInterval.day:
        return 1
    if interval == PlanInterval.week:
        return 7
    start = as_utc(reference)
    if interval == PlanInterval.month:
        return days_between(start, _add_months(start, 1))
    if interval == PlanInterval.year:
        return days_between(start, _add_months(start, 12))
    raise ValueError(f"Unsupported interval: {interval}")


def daily_rate(amount: Decimal, interval: PlanInterval, reference: datetime | date) -> Decimal:
    """Unrounded price per day of a plan."""
    return Decimal(str(amount)) / Decimal(calculate_cycle_days(interval, reference))


def _quantize_rate(value: Decimal) -> Decimal:
    return value.quantize(RATE_QUANT)


def _breakdown(items: list[ProrationLineItem]) -> ProrationBreakdown:
    total = sum((item.amount for item in items), Decimal("0.00"))
    return ProrationBreakdown(amount=round_money(total), breakdown=items)


def compute_proration(
    old_rate: Decimal,
    new_rate: Decimal,
    period_start: datetime,
    period_end: datetime,
    effective_date: datetime,
    old_label: str = "current plan",
    new_label: str = "new plan",
) -> ProrationResult:
    """Credit and charge for switching daily rates at ``effective_date``.

    An effective date before the period start is treated as the start. When
    no unused days remain, both sides are zero with empty breakdowns.
    """
    start = as_utc(period_start)
    end = as_utc(period_end)
    effective = max(as_utc(effective_date), start)

    period_days = days_between(start, end)
    unused_days = days_between(effective, end)
    if period_days <= 0 or unused_days <= 0:
        return ProrationResult(
            credit=ProrationBreakdown(),
            charge=ProrationBreakdown(),
            net=Decimal("0.00"),
            unused_days=0,
            period_days=max(period_days, 0),
            rate=Decimal("0"),
        )

    rate = _quantize_rate(Decimal(unused_days) / Decimal(period_days))
    credit = _breakdown(
        [
            ProrationLineItem(
                description=f"Credit for unused {old_label}",
                amount=round_money(Decimal(str(old_rate)) * unused_days),
                period_start=effective,
                period_end=end,
                rate=rate,
            )
        ]
    )
    charge = _breakdown(
        [
            ProrationLineItem(
                description=f"Prorated charge for {new_label}",
                amount=round_money(Decimal(str(new_rate)) * unused_days),
                period_start=effective,
                period_end=end,
                rate=rate,
            )
        ]
    )
    return ProrationResult(
        credit=credit,
        charge=charge,
        net=calculate_net_proration(credit, charge),
        unused_days=unused_days,
        period_days=period_days,
        rate=rate,
    )


def calculate_proration_credit(
    charges: Iterable[ChargeComponent],
    period_start: datetime,
    period_end: datetime,
    change_date: datetime,
) -> ProrationBreakdown:
    """Credit each period charge for its unused share.

    Tax already collected is not credited back.
    """
    start = as_utc(period_start)
    end = as_utc(period_end)
    change = max(as_utc(change_date), start)
    total_days = days_between(start, end)
    unused_days = days_between(change, end)
    if total_days <= 0 or unused_days <= 0:
        return ProrationBreakdown()

    rate = Decimal(unused_days) / Decimal(total_days)
    items = [
        ProrationLineItem(
            description=f"Credit for unused {component.description}",
            amount=round_money((Decimal(str(component.amount)) - Decimal(str(component.tax_amount))) * rate),
            period_start=change,
            period_end=end,
            rate=_quantize_rate(rate),
        )
        for component in charges
    ]
    return _breakdown(items)


def calculate_proration_charge(plan: Plan, start: datetime, end: datetime) -> ProrationBreakdown:
    """Charge the new plan for ``start..end`` against its own cycle length."""
    days_to_charge = days_between(start, end)
    if days_to_charge <= 0:
        return ProrationBreakdown()
    cycle_days = calculate_cycle_days(plan.interval, start)
    rate = Decimal(days_to_charge) / Decimal(cycle_days)
    item = ProrationLineItem(
        description=f"Prorated charge for {plan.name}",
        amount=round_money(Decimal(str(plan.amount)) * rate),
        period_start=as_utc(start),
        period_end=as_utc(end),
        rate=_quantize_rate(rate),
    )
    return _breakdown([item])


def calculate_add_on_proration(
    add_on_amount: Decimal,
    add_on_start: datetime,
    change_date: datetime,
    period_end: datetime,
) -> Decimal:
    """Credit for an add-on whose own period began at ``add_on_start``."""
    total_days = days_between(add_on_start, period_end)
    unused_days = days_between(change_date, period_end)
    if total_days <= 0 or unused_days <= 0:
        return Decimal("0.00")
    return round_money(Decimal(str(add_on_amount)) * Decimal(unused_days) / Decimal(total_days))


def calculate_net_proration(credit: ProrationBreakdown, charge: ProrationBreakdown) -> Decimal:
    """Positive when the customer owes money, negative for a net credit."""
    return round_money(charge.amount - credit.amount)
