from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Collection, Dict, Iterable, List, Optional, Tuple

MIN_PATTERN_OCCURRENCES = 3
PATTERN_GAP_TOLERANCE_DAYS = Decimal("5")
PATTERN_MIN_INTERVAL_DAYS = Decimal("5")
PATTERN_MAX_INTERVAL_DAYS = Decimal("35")

MIN_SUBSCRIPTION_OCCURRENCES = 2
SUBSCRIPTION_GAP_TOLERANCE_DAYS = Decimal("7")
SUBSCRIPTION_FREQUENCY_WINDOWS = (
    ("Monthly", Decimal("26"), Decimal("35")),
    ("Quarterly", Decimal("85"), Decimal("100")),
    ("Yearly", Decimal("350"), Decimal("380")),
)
SUBSCRIPTION_CATEGORY_KEYWORDS = (
    ("Entertainment", ("netflix", "prime", "disney", "hotstar", "jiocinema")),
    ("Music", ("spotify", "music")),
    ("Cloud Storage", ("icloud", "google one", "dropbox")),
    ("Food Delivery", ("swiggy", "zomato")),
    ("Productivity", ("chatgpt", "notion", "slack", "adobe")),
)
SUBSCRIPTION_NAME_KEYWORDS = (
    "netflix",
    "spotify",
    "youtube",
    "amazon prime",
    "prime video",
    "disney",
    "hotstar",
    "jiocinema",
    "swiggy",
    "zomato",
    "icloud",
    "google one",
    "chatgpt",
    "openai",
    "apple",
    "microsoft",
    "adobe",
    "dropbox",
    "notion",
    "slack",
    "subscription",
    "premium",
    "plus",
    "pro",
    "membership",
)
DEFAULT_SUBSCRIPTION_FREQUENCY = "Monthly"
SOURCE_PAYMENTS = "payments"
SOURCE_RECURRING_PAYMENTS = "recurring_payments"

SECONDS_PER_DAY = Decimal("86400")


@dataclass(frozen=True)
class PaymentRecord:
    description: str
    amount: Decimal
    date: date


@dataclass(frozen=True)
class RecurringPaymentRecord:
    name: str
    amount: Decimal
    frequency: Optional[str] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class RecurrenceSuggestion:
    description: str
    amount: Decimal
    occurrences: int
    interval_days: int


@dataclass(frozen=True)
class SubscriptionCandidate:
    name: str
    amount: Decimal
    frequency: str
    category: Optional[str] = None
    provider: Optional[str] = None
    source: str = SOURCE_PAYMENTS


@dataclass
class _PaymentGroup:
    description: str
    amount: Decimal
    moments: List[datetime]


def detect_recurring_patterns(
    transactions: Iterable[PaymentRecord],
) -> List[RecurrenceSuggestion]:
    """Suggest undeclared recurring payments hidden in a payment history.

    Payments are grouped by case-insensitive, trimmed description and exact
    amount. A group of three or more is reported when every gap between
    consecutive dates is within five days of the mean gap and the mean gap is
    between 5 and 35 days. Suggestions are ordered by each group's earliest
    payment.
    """
    records = list(transactions)
    if len(records) < MIN_PATTERN_OCCURRENCES:
        return []

    accepted: List[Tuple[datetime, RecurrenceSuggestion]] = []
    for group in _group_payments(records):
        if len(group.moments) < MIN_PATTERN_OCCURRENCES:
            continue
        moments = sorted(group.moments)
        gaps = _day_gaps(moments)
        mean_gap = _mean(gaps)
        if not _gaps_within(gaps, mean_gap, PATTERN_GAP_TOLERANCE_DAYS):
            continue
        if not PATTERN_MIN_INTERVAL_DAYS <= mean_gap <= PATTERN_MAX_INTERVAL_DAYS:
            continue
        accepted.append(
            (
                moments[0],
                RecurrenceSuggestion(
                    description=group.description,
                    amount=group.amount,
                    occurrences=len(moments),
                    interval_days=_round_half_up(mean_gap),
                ),
            )
        )

    accepted.sort(key=lambda item: item[0])
    return [suggestion for _, suggestion in accepted]


def detect_subscription_candidates(
    payments: Iterable[PaymentRecord],
    existing: Collection[Tuple[str, Decimal]] = (),
    recurring: Iterable[RecurringPaymentRecord] = (),
) -> List[SubscriptionCandidate]:
    """Find subscriptions the user pays for but does not track yet.

    Active recurring payments whose name contains a subscription keyword are
    reported first, followed by monthly, quarterly or yearly charges found in
    the payment history. ``existing`` holds ``(name, amount)`` pairs of
    subscriptions the user already has; matching entries are skipped.
    """
    seen_keys = set()
    for name, amount in existing:
        coerced = _coerce_amount(amount)
        if name and coerced is not None:
            seen_keys.add(_group_key(name, coerced))

    candidates: List[SubscriptionCandidate] = []
    for entry in recurring:
        amount = _coerce_amount(entry.amount)
        if not entry.name or not entry.name.strip() or amount is None:
            continue
        key = _group_key(entry.name, amount)
        if key in seen_keys or not _looks_like_subscription(entry.name):
            continue
        candidates.append(
            SubscriptionCandidate(
                name=entry.name,
                amount=amount,
                frequency=entry.frequency or DEFAULT_SUBSCRIPTION_FREQUENCY,
                category=entry.category or None,
                provider=entry.name,
                source=SOURCE_RECURRING_PAYMENTS,
            )
        )
        seen_keys.add(key)

    records = list(payments)
    if len(records) < MIN_SUBSCRIPTION_OCCURRENCES:
        return candidates

    for group in _group_payments(records):
        if len(group.moments) < MIN_SUBSCRIPTION_OCCURRENCES:
            continue
        key = _group_key(group.description, group.amount)
        if key in seen_keys:
            continue

        gaps = _day_gaps(sorted(group.moments))
        mean_gap = _mean(gaps)
        frequency = _classify_frequency(mean_gap)
        if frequency is None:
            continue
        if not _gaps_within(gaps, mean_gap, SUBSCRIPTION_GAP_TOLERANCE_DAYS):
            continue

        candidates.append(
            SubscriptionCandidate(
                name=group.description,
                amount=group.amount,
                frequency=frequency,
                category=guess_subscription_category(group.description),
                provider=group.description,
            )
        )
        seen_keys.add(key)

    return candidates


def guess_subscription_category(name: str) -> Optional[str]:
    normalized = name.lower()
    for category, keywords in SUBSCRIPTION_CATEGORY_KEYWORDS:
        if any(keyword in normalized for keyword in keywords):
            return category
    return None


def _looks_like_subscription(name: str) -> bool:
    normalized = name.lower()
    return any(keyword in normalized for keyword in SUBSCRIPTION_NAME_KEYWORDS)


def _group_payments(records: Iterable[PaymentRecord]) -> List[_PaymentGroup]:
    groups: Dict[Tuple[str, Decimal], _PaymentGroup] = {}
    for record in records:
        if not record.description or not record.description.strip():
            continue
        amount = _coerce_amount(record.amount)
        moment = _coerce_moment(record.date)
        if amount is None or moment is None:
            continue
        key = _group_key(record.description, amount)
        group = groups.get(key)
        if group is None:
            group = _PaymentGroup(
                description=record.description,
                amount=amount,
                moments=[],
            )
            groups[key] = group
        group.moments.append(moment)
    return list(groups.values())


def _group_key(description: str, amount: Decimal) -> Tuple[str, Decimal]:
    return description.strip().casefold(), amount


def _day_gaps(moments: List[datetime]) -> List[int]:
    gaps = []
    for previous, current in zip(moments, moments[1:]):
        seconds = Decimal(str(abs(current - previous).total_seconds()))
        gaps.append(_round_half_up(seconds / SECONDS_PER_DAY))
    return gaps


def _mean(values: List[int]) -> Decimal:
    if not values:
        return Decimal("0")
    return Decimal(sum(values)) / Decimal(len(values))


def _gaps_within(gaps: List[int], mean_gap: Decimal, tolerance: Decimal) -> bool:
    return all(abs(Decimal(gap) - mean_gap) <= tolerance for gap in gaps)


def _classify_frequency(mean_gap: Decimal) -> Optional[str]:
    for label, lower, upper in SUBSCRIPTION_FREQUENCY_WINDOWS:
        if lower <= mean_gap <= upper:
            return label
    return None


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _coerce_moment(value: date | datetime | str) -> Optional[datetime]:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    return None


def _coerce_amount(amount: Decimal | int | float | str) -> Optional[Decimal]:
    if isinstance(amount, Decimal):
        coerced = amount
    else:
        try:
            coerced = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            return None
    if not coerced.is_finite():
        return None
    return coerced
