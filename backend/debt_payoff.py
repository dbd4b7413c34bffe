from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, Overflow, getcontext, localcontext
from typing import Callable, Dict, Iterable, List, Sequence

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MONTHS_PER_YEAR = Decimal("12")
AMOUNT_CEILING = Decimal("1E+30")

PAYOFF_MONTH_CAP = 1200
CHECKPOINT_INTERVAL = 3

AVALANCHE = "avalanche"
SNOWBALL = "snowball"


@dataclass(frozen=True)
class LoanSnapshot:
    id: int | str
    remaining_amount: Decimal
    interest_rate: Decimal
    emi_amount: Decimal


@dataclass(frozen=True)
class PayoffCheckpoint:
    month: int
    balances: Dict[int | str, Decimal]


@dataclass(frozen=True)
class PayoffResult:
    months: int
    total_interest: Decimal
    schedule: tuple[PayoffCheckpoint, ...] = field(default=(), compare=False)


@dataclass(frozen=True)
class StrategyComparison:
    avalanche: PayoffResult
    snowball: PayoffResult
    recommended: str
    interest_difference: Decimal
    months_difference: int


@dataclass(frozen=True)
class ExtraPaymentImpact:
    baseline: PayoffResult
    with_extra: PayoffResult
    interest_saved: Decimal
    months_saved: int


def simulate_avalanche_payoff(
    loans: Iterable[LoanSnapshot],
    extra_monthly: Decimal | int | float | str = ZERO,
    *,
    cascade_extra: bool = False,
    month_cap: int = PAYOFF_MONTH_CAP,
    checkpoint_interval: int = CHECKPOINT_INTERVAL,
) -> PayoffResult:
    """Project payoff when extra money goes to the highest-rate loan first.

    Each month every open loan accrues interest, which is capitalized before
    its EMI is paid. ``extra_monthly`` is then applied to the open loan with
    the highest annual rate (first in input order on ties). Unless
    ``cascade_extra`` is set, any part of the extra payment that the target
    loan cannot absorb is dropped for that month.

    The simulation stops after ``month_cap`` months even if balances remain.
    Balances and accrued interest saturate at ``AMOUNT_CEILING``.
    """
    return _simulate(
        loans,
        extra_monthly,
        _highest_rate_first,
        cascade_extra=cascade_extra,
        month_cap=month_cap,
        checkpoint_interval=checkpoint_interval,
    )


def simulate_snowball_payoff(
    loans: Iterable[LoanSnapshot],
    extra_monthly: Decimal | int | float | str = ZERO,
    *,
    cascade_extra: bool = False,
    month_cap: int = PAYOFF_MONTH_CAP,
    checkpoint_interval: int = CHECKPOINT_INTERVAL,
) -> PayoffResult:
    """Project payoff when extra money goes to the smallest balance first."""
    return _simulate(
        loans,
        extra_monthly,
        _smallest_balance_first,
        cascade_extra=cascade_extra,
        month_cap=month_cap,
        checkpoint_interval=checkpoint_interval,
    )


def compare_payoff_strategies(
    loans: Iterable[LoanSnapshot],
    extra_monthly: Decimal | int | float | str = ZERO,
) -> StrategyComparison:
    loan_list = list(loans)
    avalanche = simulate_avalanche_payoff(loan_list, extra_monthly)
    snowball = simulate_snowball_payoff(loan_list, extra_monthly)
    recommended = (
        AVALANCHE if avalanche.total_interest <= snowball.total_interest else SNOWBALL
    )
    return StrategyComparison(
        avalanche=avalanche,
        snowball=snowball,
        recommended=recommended,
        interest_difference=abs(avalanche.total_interest - snowball.total_interest),
        months_difference=abs(avalanche.months - snowball.months),
    )


def extra_payment_impact(
    loans: Iterable[LoanSnapshot],
    extra_monthly: Decimal | int | float | str,
) -> ExtraPaymentImpact:
    loan_list = list(loans)
    baseline = simulate_avalanche_payoff(loan_list, ZERO)
    with_extra = simulate_avalanche_payoff(loan_list, extra_monthly)
    return ExtraPaymentImpact(
        baseline=baseline,
        with_extra=with_extra,
        interest_saved=max(ZERO, baseline.total_interest - with_extra.total_interest),
        months_saved=max(0, baseline.months - with_extra.months),
    )


def _simulate(
    loans: Iterable[LoanSnapshot],
    extra_monthly: Decimal | int | float | str,
    pick_targets: Callable[[List[Decimal], Sequence[Decimal]], List[int]],
    *,
    cascade_extra: bool,
    month_cap: int,
    checkpoint_interval: int,
) -> PayoffResult:
    loan_list = list(loans)
    ids = [loan.id for loan in loan_list]
    balances = [_coerce_amount(loan.remaining_amount) for loan in loan_list]
    rates = [_coerce_amount(loan.interest_rate) for loan in loan_list]
    monthly_rates = [rate / HUNDRED / MONTHS_PER_YEAR for rate in rates]
    emis = [max(ZERO, _coerce_amount(loan.emi_amount)) for loan in loan_list]
    extra = max(ZERO, _coerce_amount(extra_monthly))

    total_interest = ZERO
    months = 0
    schedule: List[PayoffCheckpoint] = []

    with _overflow_context():
        while months < month_cap and any(balance > ZERO for balance in balances):
            months += 1

            for index, balance in enumerate(balances):
                if balance <= ZERO:
                    continue
                interest = _saturate(balance * monthly_rates[index])
                total_interest = _saturate(total_interest + interest)
                balance = _saturate(balance + interest)
                balance -= min(emis[index], balance)
                balances[index] = balance

            remaining_extra = extra
            for index in pick_targets(balances, rates):
                if remaining_extra <= ZERO:
                    break
                payment = min(remaining_extra, balances[index])
                balances[index] -= payment
                remaining_extra -= payment
                if not cascade_extra:
                    break

            paid_off = all(balance <= ZERO for balance in balances)
            if paid_off or (checkpoint_interval > 0 and months % checkpoint_interval == 0):
                schedule.append(
                    PayoffCheckpoint(month=months, balances=dict(zip(ids, balances)))
                )

    return PayoffResult(
        months=months,
        total_interest=total_interest,
        schedule=tuple(schedule),
    )


def _highest_rate_first(balances: List[Decimal], rates: Sequence[Decimal]) -> List[int]:
    open_loans = [index for index, balance in enumerate(balances) if balance > ZERO]
    return sorted(open_loans, key=lambda index: rates[index], reverse=True)


def _smallest_balance_first(balances: List[Decimal], rates: Sequence[Decimal]) -> List[int]:
    open_loans = [index for index, balance in enumerate(balances) if balance > ZERO]
    return sorted(open_loans, key=lambda index: balances[index])


def _overflow_context():
    context = getcontext().copy()
    context.traps[Overflow] = False
    context.traps[InvalidOperation] = False
    return localcontext(context)


def _saturate(value: Decimal) -> Decimal:
    if value.is_nan():
        return ZERO
    return max(-AMOUNT_CEILING, min(value, AMOUNT_CEILING))


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
