from __future__ import annotations

from decimal import Decimal, InvalidOperation, Overflow, getcontext, localcontext

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")
MONTHS_PER_YEAR = Decimal("12")


def calculate_emi(
    principal: Decimal | int | float | str,
    annual_rate: Decimal | int | float | str,
    tenure_months: int,
) -> Decimal:
    """Equated monthly installment: P * r * (1+r)^n / ((1+r)^n - 1)."""
    principal = _coerce_amount(principal)
    monthly_rate = _coerce_amount(annual_rate) / HUNDRED / MONTHS_PER_YEAR
    if tenure_months <= 0:
        return ZERO
    if monthly_rate == ZERO:
        return principal / Decimal(tenure_months)
    with _overflow_context():
        growth = (ONE + monthly_rate) ** tenure_months
        if growth.is_infinite():
            return _finite_or_zero(principal * monthly_rate)
        return _finite_or_zero(principal * monthly_rate * growth / (growth - ONE))


def calculate_total_interest(
    principal: Decimal | int | float | str,
    annual_rate: Decimal | int | float | str,
    tenure_months: int,
) -> Decimal:
    emi = calculate_emi(principal, annual_rate, tenure_months)
    if tenure_months <= 0:
        return ZERO
    with _overflow_context():
        return _finite_or_zero(emi * Decimal(tenure_months) - _coerce_amount(principal))


def calculate_sip_maturity(
    monthly_amount: Decimal | int | float | str,
    years: Decimal | int | float | str,
    annual_return_percent: Decimal | int | float | str,
) -> Decimal:
    """Future value of monthly contributions made at the start of each month."""
    monthly_amount = _coerce_amount(monthly_amount)
    months = _coerce_amount(years) * MONTHS_PER_YEAR
    monthly_rate = _coerce_amount(annual_return_percent) / HUNDRED / MONTHS_PER_YEAR
    if months <= ZERO:
        return ZERO
    with _overflow_context():
        if monthly_rate == ZERO:
            return _finite_or_zero(monthly_amount * months)
        growth = (ONE + monthly_rate) ** months
        return _finite_or_zero(
            monthly_amount * ((growth - ONE) / monthly_rate) * (ONE + monthly_rate)
        )


def calculate_lump_sum(
    principal: Decimal | int | float | str,
    years: Decimal | int | float | str,
    annual_return_percent: Decimal | int | float | str,
) -> Decimal:
    principal = _coerce_amount(principal)
    years = _coerce_amount(years)
    rate = _coerce_amount(annual_return_percent) / HUNDRED
    if years <= ZERO:
        return principal
    with _overflow_context():
        return _finite_or_zero(principal * (ONE + rate) ** years)


def calculate_cagr(
    initial_value: Decimal | int | float | str,
    final_value: Decimal | int | float | str,
    years: Decimal | int | float | str,
) -> Decimal:
    """Compound annual growth rate, in percent."""
    initial_value = _coerce_amount(initial_value)
    final_value = _coerce_amount(final_value)
    years = _coerce_amount(years)
    if initial_value <= ZERO or years <= ZERO:
        return ZERO
    if final_value <= ZERO:
        return -HUNDRED
    with _overflow_context():
        return _finite_or_zero(((final_value / initial_value) ** (ONE / years) - ONE) * HUNDRED)


def _overflow_context():
    """Decimal context where overflow yields Infinity and invalid results NaN."""
    context = getcontext().copy()
    context.traps[Overflow] = False
    context.traps[InvalidOperation] = False
    return localcontext(context)


def _finite_or_zero(value: Decimal) -> Decimal:
    if not value.is_finite():
        return ZERO
    return value


def _coerce_amount(amount: Decimal | int | float | str | None) -> Decimal:
    if isinstance(amount, Decimal):
        coerced = amount
    else:
        try:
            coerced = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            return ZERO
    if not coerced.is_finite():
        return ZERO
    return coerced
