"""Storage (snake_case) to wire (camelCase) field tables.

Every table maps a stored column or dataclass attribute to the name the HTTP
clients expect. Keys missing from a table are never sent over the wire.
"""

from __future__ import annotations

from dataclasses import is_dataclass
from typing import Any, Mapping

USER_FIELDS: dict[str, str] = {
    "id": "id",
    "email": "email",
    "created_at": "createdAt",
}

LOAN_FIELDS: dict[str, str] = {
    "id": "id",
    "name": "name",
    "lender": "lender",
    "principal_amount": "principalAmount",
    "interest_rate": "interestRate",
    "tenure_months": "tenureMonths",
    "emi_amount": "emiAmount",
    "start_date": "startDate",
    "remaining_amount": "remainingAmount",
    "is_active": "isActive",
    "notes": "notes",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

PAYMENT_FIELDS: dict[str, str] = {
    "id": "id",
    "date": "date",
    "description": "description",
    "amount": "amount",
    "category": "category",
    "location": "location",
    "created_at": "createdAt",
}

RECURRING_PAYMENT_FIELDS: dict[str, str] = {
    "id": "id",
    "name": "name",
    "amount": "amount",
    "frequency": "frequency",
    "bank": "bank",
    "category": "category",
    "start_date": "startDate",
    "next_due_date": "nextDueDate",
    "is_active": "isActive",
    "notes": "notes",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}

SUBSCRIPTION_FIELDS: dict[str, str] = {
    "id": "id",
    "name": "name",
    "amount": "amount",
    "frequency": "frequency",
    "category": "category",
    "provider": "provider",
    "is_active": "isActive",
    "created_at": "createdAt",
}

SUBSCRIPTION_CANDIDATE_FIELDS: dict[str, str] = {
    "name": "name",
    "amount": "amount",
    "frequency": "frequency",
    "source": "source",
    "category": "category",
    "provider": "provider",
}

RECURRENCE_SUGGESTION_FIELDS: dict[str, str] = {
    "description": "description",
    "amount": "amount",
    "occurrences": "occurrences",
    "interval_days": "intervalDays",
}

PAYOFF_RESULT_FIELDS: dict[str, str] = {
    "months": "months",
    "total_interest": "totalInterest",
}

PAYOFF_CHECKPOINT_FIELDS: dict[str, str] = {
    "month": "month",
    "balances": "balances",
}

MONTHLY_SPENDING_FIELDS: dict[str, str] = {
    "month": "month",
    "categories": "categories",
    "total": "total",
}

DAILY_SPENDING_FIELDS: dict[str, str] = {
    "day": "day",
    "amount": "amount",
}


def to_wire(record: Any, fields: Mapping[str, str]) -> dict[str, Any]:
    """Rename a row mapping or dataclass instance to its wire shape."""
    source = _as_mapping(record)
    return {wire: source[stored] for stored, wire in fields.items() if stored in source}


def from_wire(body: Mapping[str, Any], fields: Mapping[str, str]) -> dict[str, Any]:
    reverse = {wire: stored for stored, wire in fields.items()}
    return {reverse[key]: value for key, value in body.items() if key in reverse}


def wire_alias(fields: Mapping[str, str]):
    """Alias generator for pydantic payloads that share a field table."""

    def alias(name: str) -> str:
        return fields.get(name, name)

    return alias


def _as_mapping(record: Any) -> Mapping[str, Any]:
    if is_dataclass(record) and not isinstance(record, type):
        return {name: getattr(record, name) for name in record.__dataclass_fields__}
    if isinstance(record, Mapping):
        return record
    raise TypeError(f"Cannot map record of type {type(record).__name__}.")
