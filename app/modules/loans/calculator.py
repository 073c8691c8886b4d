"""Amortization arithmetic for reducing-balance loans.

All money is ``Decimal`` quantized to the minor unit (0.01) with
``ROUND_HALF_UP``. Interest is rounded once per period, and the final
installment absorbs whatever rounding drift is left, so the principal
components of a schedule always add up to the principal exactly.

Rates passed to these functions are *periodic* rates. Use
:func:`periodic_rate` to derive one from a product rate: month products quote
an annual rate (divided by 12), day products quote a daily rate (used as is).
"""
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Iterator, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from app.core.exceptions import InvalidTermsError
from app.modules.loans.models import TenureUnit

MINOR_UNIT = Decimal("0.01")
ZERO = Decimal("0.00")
MONTHS_PER_YEAR = 12
DEFAULT_PRECLOSURE_CHARGE_RATE = Decimal("0.02")


@dataclass(frozen=True)
class InstallmentScheduleEntry:
    index: int
    due_date: Optional[date]
    emi: Decimal  # Payment due for this row; the last row may differ from the loan EMI
    principal_component: Decimal
    interest_component: Decimal
    remaining_balance: Decimal
    paid: bool = False


@dataclass(frozen=True)
class PreclosureQuote:
    outstanding_principal: Decimal
    charges: Decimal
    total_payable: Decimal
    savings: Decimal
    remaining_interest: Decimal
    remaining_installments: int
    paid_installments: int


def _as_decimal(value) -> Decimal:
    if isinstance(value, float):
        raise TypeError("Monetary values and rates must be Decimal, int or str, not float")
    return value if isinstance(value, Decimal) else Decimal(value)


def to_money(value) -> Decimal:
    """Quantize to the currency minor unit, rounding half up"""
    return _as_decimal(value).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def periodic_rate(rate, tenure_unit: TenureUnit) -> Decimal:
    """Convert a product rate into the rate applied per installment period"""
    rate = _as_decimal(rate)
    if rate < 0:
        raise InvalidTermsError(f"Interest rate cannot be negative (got {rate})")
    if tenure_unit == TenureUnit.MONTH:
        return rate / MONTHS_PER_YEAR
    if tenure_unit == TenureUnit.DAY:
        return rate
    raise InvalidTermsError(f"Unsupported tenure unit: {tenure_unit}")


def due_date(start: date, index: int, tenure_unit: TenureUnit) -> date:
    """Due date of installment ``index`` counted from ``start`` (the disbursal date)"""
    if tenure_unit == TenureUnit.MONTH:
        return start + relativedelta(months=index)
    return start + timedelta(days=index)


def validate_terms(principal, rate, num_periods: int) -> Tuple[Decimal, Decimal]:
    """Reject bad terms before any computation happens"""
    principal = _as_decimal(principal)
    rate = _as_decimal(rate)
    reasons = []
    if principal <= 0:
        reasons.append(f"Principal must be positive (got {principal})")
    if rate < 0:
        reasons.append(f"Interest rate cannot be negative (got {rate})")
    if not isinstance(num_periods, int) or num_periods <= 0:
        reasons.append(f"Number of periods must be a positive integer (got {num_periods})")
    if reasons:
        raise InvalidTermsError("Invalid loan terms", reasons=reasons)
    return principal, rate


def compute_emi(principal, rate, num_periods: int) -> Decimal:
    """Equated installment: ``P·r·(1+r)^n / ((1+r)^n − 1)``, or ``P/n`` at zero rate"""
    principal, rate = validate_terms(principal, rate, num_periods)
    if rate == 0:
        return to_money(principal / num_periods)
    factor = (1 + rate) ** num_periods
    return to_money(principal * rate * factor / (factor - 1))


def _amortize(
    principal: Decimal,
    rate: Decimal,
    emi: Decimal,
    num_periods: Optional[int],
) -> Iterator[Tuple[int, Decimal, Decimal, Decimal]]:
    """Yield ``(index, interest, principal_component, balance)`` until the balance is cleared"""
    balance = principal
    index = 0
    while balance > 0:
        index += 1
        interest = to_money(balance * rate)
        principal_part = emi - interest
        is_last = num_periods is not None and index >= num_periods
        if principal_part <= 0 and not is_last:
            raise InvalidTermsError(f"Installment {emi} does not cover periodic interest {interest}")
        if is_last or principal_part >= balance:
            principal_part = balance
        balance -= principal_part
        yield index, interest, principal_part, balance


def build_schedule(
    principal,
    rate,
    num_periods: int,
    *,
    start_date: Optional[date] = None,
    tenure_unit: TenureUnit = TenureUnit.MONTH,
    paid_installments: int = 0,
    emi: Optional[Decimal] = None,
) -> List[InstallmentScheduleEntry]:
    """Build the installment schedule.

    The list is truncated early if rounding drift clears the balance before
    ``num_periods``; the remaining balance never goes negative and is exactly
    zero on the last entry. Due dates are filled in only when ``start_date``
    is given.
    """
    principal, rate = validate_terms(principal, rate, num_periods)
    if emi is None:
        emi = compute_emi(principal, rate, num_periods)

    schedule = []
    for index, interest, principal_part, balance in _amortize(principal, rate, emi, num_periods):
        schedule.append(InstallmentScheduleEntry(
            index=index,
            due_date=due_date(start_date, index, tenure_unit) if start_date else None,
            emi=principal_part + interest,
            principal_component=principal_part,
            interest_component=interest,
            remaining_balance=balance,
            paid=index <= paid_installments,
        ))
    return schedule


def compute_total_interest(principal, emi, num_periods: int) -> Decimal:
    return to_money(_as_decimal(emi) * num_periods - _as_decimal(principal))


def outstanding_principal(principal, rate, num_periods: int, paid_periods: int, emi: Optional[Decimal] = None) -> Decimal:
    """Principal still owed after ``paid_periods`` installments"""
    if paid_periods <= 0:
        return to_money(principal)
    schedule = build_schedule(principal, rate, num_periods, emi=emi)
    return schedule[min(paid_periods, len(schedule)) - 1].remaining_balance


def compute_preclosure(
    principal,
    rate,
    paid_periods: int,
    emi,
    *,
    num_periods: Optional[int] = None,
    charge_rate: Decimal = DEFAULT_PRECLOSURE_CHARGE_RATE,
) -> PreclosureQuote:
    """Quote for repaying the whole outstanding principal now.

    The schedule is replayed for ``paid_periods`` installments to find the
    outstanding principal. ``charges`` is that principal times
    ``charge_rate``; a rate of exactly zero is the only way to get no charge.
    ``savings`` is the interest the remaining schedule would have cost, less
    the charges, and can be negative.
    """
    if charge_rate is None:
        raise InvalidTermsError("Pre-closure charge rate must be configured")
    charge_rate = _as_decimal(charge_rate)
    if charge_rate < 0:
        raise InvalidTermsError(f"Pre-closure charge rate cannot be negative (got {charge_rate})")
    if not isinstance(paid_periods, int) or paid_periods < 0:
        raise InvalidTermsError(f"Paid installments must be a non-negative integer (got {paid_periods})")

    principal, rate = validate_terms(principal, rate, num_periods if num_periods is not None else 1)
    if num_periods is not None and paid_periods > num_periods:
        raise InvalidTermsError(f"Paid installments ({paid_periods}) exceed the tenure ({num_periods})")
    emi = _as_decimal(emi)
    if emi <= 0:
        raise InvalidTermsError(f"EMI must be positive (got {emi})")

    rows = list(_amortize(principal, rate, emi, num_periods))
    paid_rows = rows[:paid_periods]
    remaining_rows = rows[paid_periods:]

    outstanding = paid_rows[-1][3] if paid_rows else principal
    remaining_interest = sum((row[1] for row in remaining_rows), ZERO)
    charges = to_money(outstanding * charge_rate)

    return PreclosureQuote(
        outstanding_principal=to_money(outstanding),
        charges=charges,
        total_payable=to_money(outstanding + charges),
        savings=to_money(remaining_interest - charges),
        remaining_interest=to_money(remaining_interest),
        remaining_installments=len(remaining_rows),
        paid_installments=paid_periods,
    )


def max_principal_for_emi(emi, rate, num_periods: int) -> Decimal:
    """Largest principal whose EMI fits within ``emi`` (inverse annuity, rounded down)"""
    emi = _as_decimal(emi)
    rate = _as_decimal(rate)
    if emi <= 0:
        return ZERO
    if num_periods <= 0:
        raise InvalidTermsError(f"Number of periods must be positive (got {num_periods})")
    if rate == 0:
        return (emi * num_periods).quantize(MINOR_UNIT, rounding=ROUND_DOWN)
    factor = (1 + rate) ** num_periods
    return (emi * (factor - 1) / (rate * factor)).quantize(MINOR_UNIT, rounding=ROUND_DOWN)
