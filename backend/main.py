import logging
from datetime import date
from decimal import Decimal

import bcrypt
from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from backend.config import Settings
from backend.debt_payoff import (
    LoanSnapshot,
    PayoffResult,
    compare_payoff_strategies,
    extra_payment_impact,
)
from backend.field_mapping import (
    DAILY_SPENDING_FIELDS,
    LOAN_FIELDS,
    MONTHLY_SPENDING_FIELDS,
    PAYMENT_FIELDS,
    PAYOFF_CHECKPOINT_FIELDS,
    PAYOFF_RESULT_FIELDS,
    RECURRENCE_SUGGESTION_FIELDS,
    RECURRING_PAYMENT_FIELDS,
    SUBSCRIPTION_CANDIDATE_FIELDS,
    SUBSCRIPTION_FIELDS,
    USER_FIELDS,
    to_wire,
    wire_alias,
)
from backend.financial_math import (
    calculate_cagr,
    calculate_emi,
    calculate_lump_sum,
    calculate_sip_maturity,
    calculate_total_interest,
)
from backend.logging_config import setup_logging
from backend.recurrence_detection import (
    PaymentRecord,
    RecurringPaymentRecord,
    detect_recurring_patterns,
    detect_subscription_candidates,
)
from backend.spending_analytics import (
    DEFAULT_ROLLUP_MONTHS,
    SpendingRecord,
    rollup_window_start,
    summarize_spending,
)

logger = logging.getLogger(__name__)

metadata = MetaData()
router = APIRouter()

MAX_AMOUNT = Decimal("1000000000000")
MAX_RATE_PERCENT = Decimal("100")
MAX_TENURE_MONTHS = 1200
MAX_YEARS = Decimal("100")

SUBSCRIPTION_FREQUENCIES = {"monthly": "Monthly", "quarterly": "Quarterly", "yearly": "Yearly"}
RECURRING_FREQUENCIES = {"weekly": "Weekly", "monthly": "Monthly", "yearly": "Yearly"}

REQUIRED_LOAN_FIELDS = (
    "principal_amount",
    "interest_rate",
    "tenure_months",
    "emi_amount",
    "start_date",
    "remaining_amount",
    "is_active",
)

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

payments = Table(
    "payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("date", Date, nullable=False),
    Column("description", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("category", String(100)),
    Column("location", String(255)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

recurring_payments = Table(
    "recurring_payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("frequency", String(20), nullable=False),
    Column("bank", String(255)),
    Column("category", String(100)),
    Column("start_date", Date, nullable=False),
    Column("next_due_date", Date, nullable=False),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("notes", Text),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

loans = Table(
    "loans",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("lender", String(255)),
    Column("principal_amount", Numeric(14, 2), nullable=False),
    Column("interest_rate", Numeric(6, 3), nullable=False),
    Column("tenure_months", Integer, nullable=False),
    Column("emi_amount", Numeric(12, 2), nullable=False),
    Column("start_date", Date, nullable=False),
    Column("remaining_amount", Numeric(14, 2), nullable=False),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("notes", Text),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now()),
)

subscriptions = Table(
    "subscriptions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("frequency", String(20), nullable=False),
    Column("category", String(100)),
    Column("provider", String(255)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)


class CredentialsPayload(BaseModel):
    email: str
    password: str


def _normalize_frequency(value: str, supported: dict[str, str]) -> str:
    normalized = value.strip().lower()
    if normalized not in supported:
        raise ValueError(f"Only {', '.join(supported)} frequencies are supported.")
    return supported[normalized]


class PaymentPayload(BaseModel):
    model_config = ConfigDict(alias_generator=wire_alias(PAYMENT_FIELDS), populate_by_name=True)

    date: date
    description: str
    amount: Decimal
    category: str | None = None
    location: str | None = None

    @classmethod
    def validate_payload(cls, payload: "PaymentPayload") -> "PaymentPayload":
        payload.description = payload.description.strip()
        payload.category = payload.category.strip() if payload.category else None
        payload.location = payload.location.strip() if payload.location else None
        if not payload.description:
            raise ValueError("Description required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        return payload


class LoanPayload(BaseModel):
    model_config = ConfigDict(alias_generator=wire_alias(LOAN_FIELDS), populate_by_name=True)

    name: str
    lender: str | None = None
    principal_amount: Decimal
    interest_rate: Decimal
    tenure_months: int
    emi_amount: Decimal
    start_date: date
    remaining_amount: Decimal | None = None
    is_active: bool = True
    notes: str | None = None

    @classmethod
    def validate_payload(cls, payload: "LoanPayload") -> "LoanPayload":
        payload.name = payload.name.strip()
        payload.lender = payload.lender.strip() if payload.lender else None
        payload.notes = payload.notes.strip() if payload.notes else None
        if not payload.name:
            raise ValueError("Loan name required.")
        if payload.remaining_amount is None:
            payload.remaining_amount = payload.principal_amount
        _validate_loan_numbers(
            principal_amount=payload.principal_amount,
            interest_rate=payload.interest_rate,
            tenure_months=payload.tenure_months,
            emi_amount=payload.emi_amount,
            remaining_amount=payload.remaining_amount,
        )
        return payload


class LoanUpdatePayload(BaseModel):
    model_config = ConfigDict(alias_generator=wire_alias(LOAN_FIELDS), populate_by_name=True)

    name: str | None = None
    lender: str | None = None
    principal_amount: Decimal | None = None
    interest_rate: Decimal | None = None
    tenure_months: int | None = None
    emi_amount: Decimal | None = None
    start_date: date | None = None
    remaining_amount: Decimal | None = None
    is_active: bool | None = None
    notes: str | None = None

    def changes(self) -> dict:
        values = self.model_dump(exclude_unset=True)
        if "name" in values:
            values["name"] = (values["name"] or "").strip()
            if not values["name"]:
                raise ValueError("Loan name required.")
        for key in ("lender", "notes"):
            if key in values:
                values[key] = values[key].strip() if values[key] else None
        for key in REQUIRED_LOAN_FIELDS:
            if key in values and values[key] is None:
                raise ValueError(f"{LOAN_FIELDS[key]} cannot be null.")
        _validate_loan_numbers(
            principal_amount=values.get("principal_amount"),
            interest_rate=values.get("interest_rate"),
            tenure_months=values.get("tenure_months"),
            emi_amount=values.get("emi_amount"),
            remaining_amount=values.get("remaining_amount"),
        )
        return values


class SubscriptionPayload(BaseModel):
    model_config = ConfigDict(alias_generator=wire_alias(SUBSCRIPTION_FIELDS), populate_by_name=True)

    name: str
    amount: Decimal
    frequency: str = "Monthly"
    category: str | None = None
    provider: str | None = None
    is_active: bool = True

    @classmethod
    def validate_payload(cls, payload: "SubscriptionPayload") -> "SubscriptionPayload":
        payload.name = payload.name.strip()
        payload.frequency = _normalize_frequency(payload.frequency, SUBSCRIPTION_FREQUENCIES)
        payload.category = payload.category.strip() if payload.category else None
        payload.provider = payload.provider.strip() if payload.provider else None
        if not payload.name:
            raise ValueError("Subscription name required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        return payload


class RecurringPaymentPayload(BaseModel):
    model_config = ConfigDict(
        alias_generator=wire_alias(RECURRING_PAYMENT_FIELDS), populate_by_name=True
    )

    name: str
    amount: Decimal
    frequency: str
    start_date: date
    next_due_date: date
    bank: str | None = None
    category: str | None = None
    is_active: bool = True
    notes: str | None = None

    @classmethod
    def validate_payload(cls, payload: "RecurringPaymentPayload") -> "RecurringPaymentPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Recurring payment name required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.frequency = _normalize_frequency(payload.frequency, RECURRING_FREQUENCIES)
        if payload.next_due_date < payload.start_date:
            raise ValueError("nextDueDate must be on or after startDate.")
        for key in ("bank", "category", "notes"):
            value = getattr(payload, key)
            setattr(payload, key, value.strip() if value else None)
        return payload


class RecurringPaymentUpdatePayload(BaseModel):
    model_config = ConfigDict(
        alias_generator=wire_alias(RECURRING_PAYMENT_FIELDS), populate_by_name=True
    )

    name: str | None = None
    amount: Decimal | None = None
    frequency: str | None = None
    start_date: date | None = None
    next_due_date: date | None = None
    bank: str | None = None
    category: str | None = None
    is_active: bool | None = None
    notes: str | None = None

    def changes(self) -> dict:
        values = self.model_dump(exclude_unset=True)
        for key in ("name", "amount", "frequency", "start_date", "next_due_date", "is_active"):
            if key in values and values[key] is None:
                raise ValueError(f"{RECURRING_PAYMENT_FIELDS[key]} cannot be null.")
        if "name" in values:
            values["name"] = values["name"].strip()
            if not values["name"]:
                raise ValueError("Recurring payment name required.")
        if "amount" in values and values["amount"] <= 0:
            raise ValueError("Amount must be greater than zero.")
        if "frequency" in values:
            values["frequency"] = _normalize_frequency(values["frequency"], RECURRING_FREQUENCIES)
        for key in ("bank", "category", "notes"):
            if key in values:
                values[key] = values[key].strip() if values[key] else None
        return values


def _validate_loan_numbers(
    *,
    principal_amount: Decimal | None,
    interest_rate: Decimal | None,
    tenure_months: int | None,
    emi_amount: Decimal | None,
    remaining_amount: Decimal | None,
) -> None:
    if principal_amount is not None and principal_amount <= 0:
        raise ValueError("Principal amount must be greater than zero.")
    if interest_rate is not None and interest_rate < 0:
        raise ValueError("Interest rate cannot be negative.")
    if interest_rate is not None and interest_rate > MAX_RATE_PERCENT:
        raise ValueError(f"Interest rate cannot exceed {MAX_RATE_PERCENT}%.")
    if tenure_months is not None and tenure_months <= 0:
        raise ValueError("Tenure must be at least one month.")
    if emi_amount is not None and emi_amount < 0:
        raise ValueError("EMI amount cannot be negative.")
    if remaining_amount is not None and remaining_amount < 0:
        raise ValueError("Remaining amount cannot be negative.")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_user_id(
    x_user_id: str | None = Header(None, alias="x-user-id"),
    engine: Engine = Depends(get_engine),
) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def fetch_payment_records(conn, user_id: int) -> list[PaymentRecord]:
    rows = conn.execute(
        select(payments.c.description, payments.c.amount, payments.c.date)
        .where(payments.c.user_id == user_id)
        .order_by(payments.c.date.asc(), payments.c.id.asc())
    ).mappings()
    return [
        PaymentRecord(description=row["description"], amount=row["amount"], date=row["date"])
        for row in rows
    ]


def fetch_active_loans(conn, user_id: int) -> list[dict]:
    rows = conn.execute(
        select(loans)
        .where(loans.c.user_id == user_id, loans.c.is_active.is_(True))
        .order_by(loans.c.created_at.desc(), loans.c.id.desc())
    ).mappings()
    return [dict(row) for row in rows]


def payoff_to_wire(result: PayoffResult) -> dict:
    wire = to_wire(result, PAYOFF_RESULT_FIELDS)
    wire["schedule"] = [to_wire(checkpoint, PAYOFF_CHECKPOINT_FIELDS) for checkpoint in result.schedule]
    return wire


def handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "Database error",
        exc_info=exc,
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(status_code=500, content={"detail": "Database error."})


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/auth/signup")
def signup(payload: CredentialsPayload, engine: Engine = Depends(get_engine)) -> dict:
    email = payload.email.strip().lower()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password required.")
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(email=email, hashed_password=hashed_password)
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    logger.info("User signed up", extra={"user_id": row["id"]})
    return to_wire(row, USER_FIELDS)


@router.post("/auth/login")
def login(payload: CredentialsPayload, engine: Engine = Depends(get_engine)) -> dict:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return to_wire(row, USER_FIELDS)


@router.get("/payments")
def list_payments(
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> list[dict]:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="startDate must be on or before endDate.")
    stmt = select(payments).where(payments.c.user_id == user_id)
    if start_date:
        stmt = stmt.where(payments.c.date >= start_date)
    if end_date:
        stmt = stmt.where(payments.c.date <= end_date)
    stmt = stmt.order_by(payments.c.date.desc(), payments.c.id.desc())
    with engine.begin() as conn:
        rows = conn.execute(stmt).mappings().all()
    return [to_wire(row, PAYMENT_FIELDS) for row in rows]


@router.post("/payments")
def create_payment(
    payload: PaymentPayload,
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    try:
        payload = PaymentPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(payments)
        .values(
            user_id=user_id,
            date=payload.date,
            description=payload.description,
            amount=payload.amount,
            category=payload.category,
            location=payload.location,
        )
        .returning(*payments.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create payment.")
    return to_wire(row, PAYMENT_FIELDS)


@router.delete("/payments/{payment_id}")
def delete_payment(
    payment_id: int,
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    stmt = payments.delete().where(payments.c.id == payment_id, payments.c.user_id == user_id)
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Payment not found.")
    return {"status": "deleted"}


@router.get("/loans")
def list_loans(
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> list[dict]:
    with engine.begin() as conn:
        rows = conn.execute(
            select(loans)
            .where(loans.c.user_id == user_id)
            .order_by(loans.c.created_at.desc(), loans.c.id.desc())
        ).mappings().all()
    return [to_wire(row, LOAN_FIELDS) for row in rows]


@router.post("/loans")
def create_loan(
    payload: LoanPayload,
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    try:
        payload = LoanPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(loans)
        .values(user_id=user_id, **payload.model_dump())
        .returning(*loans.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create loan.")
    return to_wire(row, LOAN_FIELDS)


@router.put("/loans/{loan_id}")
def update_loan(
    loan_id: int,
    payload: LoanUpdatePayload,
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    try:
        changes = payload.changes()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        update(loans)
        .where(loans.c.id == loan_id, loans.c.user_id == user_id)
        .values(updated_at=func.now(), **changes)
        .returning(*loans.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=404, detail="Loan not found.")
    return to_wire(row, LOAN_FIELDS)


@router.delete("/loans/{loan_id}")
def delete_loan(
    loan_id: int,
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    stmt = loans.delete().where(loans.c.id == loan_id, loans.c.user_id == user_id)
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Loan not found.")
    return {"status": "deleted"}


@router.get("/debt-optimizer")
def list_debt_optimizer_loans(
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> list[dict]:
    with engine.begin() as conn:
        rows = fetch_active_loans(conn, user_id)
    return [to_wire(row, LOAN_FIELDS) for row in rows]


@router.get("/debt-optimizer/plan")
def plan_debt_payoff(
    extra_monthly: Decimal | None = Query(None, alias="extraMonthly", ge=0),
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
    settings: Settings = Depends(get_settings),
) -> dict:
    if extra_monthly is None:
        extra_monthly = settings.default_extra_monthly
    with engine.begin() as conn:
        rows = fetch_active_loans(conn, user_id)

    snapshots = [
        LoanSnapshot(
            id=row["id"],
            remaining_amount=row["remaining_amount"],
            interest_rate=row["interest_rate"],
            emi_amount=row["emi_amount"],
        )
        for row in rows
    ]
    comparison = compare_payoff_strategies(snapshots, extra_monthly)
    impact = extra_payment_impact(snapshots, extra_monthly)
    logger.info(
        "Debt payoff plan computed",
        extra={
            "user_id": user_id,
            "loan_count": len(snapshots),
            "recommended": comparison.recommended,
            "avalanche_months": comparison.avalanche.months,
        },
    )
    return {
        "extraMonthly": extra_monthly,
        "loanCount": len(snapshots),
        "recommended": comparison.recommended,
        "avalanche": payoff_to_wire(comparison.avalanche),
        "snowball": payoff_to_wire(comparison.snowball),
        "interestDifference": comparison.interest_difference,
        "monthsDifference": comparison.months_difference,
        "interestSaved": impact.interest_saved,
        "monthsSaved": impact.months_saved,
    }


@router.get("/sip-detection")
def detect_sip_patterns(
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> list[dict]:
    with engine.begin() as conn:
        records = fetch_payment_records(conn, user_id)
    suggestions = detect_recurring_patterns(records)
    logger.info(
        "Recurring payment detection completed",
        extra={"user_id": user_id, "payment_count": len(records), "suggestion_count": len(suggestions)},
    )
    return [to_wire(suggestion, RECURRENCE_SUGGESTION_FIELDS) for suggestion in suggestions]


@router.get("/subscriptions")
def list_subscriptions(
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> list[dict]:
    with engine.begin() as conn:
        rows = conn.execute(
            select(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .order_by(subscriptions.c.name.asc(), subscriptions.c.id.asc())
        ).mappings().all()
    return [to_wire(row, SUBSCRIPTION_FIELDS) for row in rows]


@router.post("/subscriptions")
def create_subscription(
    payload: SubscriptionPayload,
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    try:
        payload = SubscriptionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(subscriptions)
        .values(user_id=user_id, **payload.model_dump())
        .returning(*subscriptions.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create subscription.")
    return to_wire(row, SUBSCRIPTION_FIELDS)


@router.post("/subscriptions/detect")
def detect_subscriptions(
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> list[dict]:
    with engine.begin() as conn:
        existing = [
            (row["name"], row["amount"])
            for row in conn.execute(
                select(subscriptions.c.name, subscriptions.c.amount).where(
                    subscriptions.c.user_id == user_id
                )
            ).mappings()
        ]
        recurring = [
            RecurringPaymentRecord(
                name=row["name"],
                amount=row["amount"],
                frequency=row["frequency"],
                category=row["category"],
            )
            for row in conn.execute(
                select(recurring_payments)
                .where(
                    recurring_payments.c.user_id == user_id,
                    recurring_payments.c.is_active.is_(True),
                )
                .order_by(recurring_payments.c.next_due_date.asc(), recurring_payments.c.id.asc())
            ).mappings()
        ]
        records = fetch_payment_records(conn, user_id)
    candidates = detect_subscription_candidates(records, existing=existing, recurring=recurring)
    logger.info(
        "Subscription detection completed",
        extra={
            "user_id": user_id,
            "payment_count": len(records),
            "recurring_count": len(recurring),
            "candidate_count": len(candidates),
        },
    )
    return [to_wire(candidate, SUBSCRIPTION_CANDIDATE_FIELDS) for candidate in candidates]


@router.get("/recurring")
def list_recurring_payments(
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> list[dict]:
    stmt = select(recurring_payments).where(recurring_payments.c.user_id == user_id)
    if start_date:
        stmt = stmt.where(recurring_payments.c.next_due_date >= start_date)
    if end_date:
        stmt = stmt.where(recurring_payments.c.next_due_date <= end_date)
    stmt = stmt.order_by(recurring_payments.c.next_due_date.asc(), recurring_payments.c.id.asc())
    with engine.begin() as conn:
        rows = conn.execute(stmt).mappings().all()
    return [to_wire(row, RECURRING_PAYMENT_FIELDS) for row in rows]


@router.post("/recurring")
def create_recurring_payment(
    payload: RecurringPaymentPayload,
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    try:
        payload = RecurringPaymentPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(recurring_payments)
        .values(user_id=user_id, **payload.model_dump())
        .returning(*recurring_payments.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create recurring payment.")
    return to_wire(row, RECURRING_PAYMENT_FIELDS)


@router.put("/recurring/{recurring_id}")
def update_recurring_payment(
    recurring_id: int,
    payload: RecurringPaymentUpdatePayload,
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    try:
        changes = payload.changes()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        update(recurring_payments)
        .where(recurring_payments.c.id == recurring_id, recurring_payments.c.user_id == user_id)
        .values(updated_at=func.now(), **changes)
        .returning(*recurring_payments.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=404, detail="Recurring payment not found.")
    return to_wire(row, RECURRING_PAYMENT_FIELDS)


@router.delete("/recurring/{recurring_id}")
def delete_recurring_payment(
    recurring_id: int,
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    stmt = recurring_payments.delete().where(
        recurring_payments.c.id == recurring_id, recurring_payments.c.user_id == user_id
    )
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Recurring payment not found.")
    return {"status": "deleted"}


@router.get("/analytics/spending")
def spending_analytics(
    as_of: date | None = Query(None, alias="asOf"),
    months: int = Query(DEFAULT_ROLLUP_MONTHS, ge=1, le=24),
    user_id: int = Depends(get_user_id),
    engine: Engine = Depends(get_engine),
) -> dict:
    today = as_of or date.today()
    window_start = rollup_window_start(today, months)
    with engine.begin() as conn:
        rows = conn.execute(
            select(payments.c.date, payments.c.amount, payments.c.category)
            .where(payments.c.user_id == user_id, payments.c.date >= window_start)
            .order_by(payments.c.date.asc(), payments.c.id.asc())
        ).mappings()
        records = [
            SpendingRecord(date=row["date"], amount=row["amount"], category=row["category"])
            for row in rows
        ]
    summary = summarize_spending(records, today, months)
    logger.info(
        "Spending rollup computed",
        extra={"user_id": user_id, "payment_count": len(records), "months": months},
    )
    return {
        "months": [to_wire(month, MONTHLY_SPENDING_FIELDS) for month in summary.months],
        "daily": [to_wire(day, DAILY_SPENDING_FIELDS) for day in summary.daily],
    }


@router.get("/calculators/emi")
def emi_calculator(
    principal: Decimal = Query(..., gt=0, le=MAX_AMOUNT),
    annual_rate: Decimal = Query(..., alias="annualRate", ge=0, le=MAX_RATE_PERCENT),
    tenure_months: int = Query(..., alias="tenureMonths", gt=0, le=MAX_TENURE_MONTHS),
) -> dict:
    emi = calculate_emi(principal, annual_rate, tenure_months)
    total_interest = calculate_total_interest(principal, annual_rate, tenure_months)
    return {
        "emi": emi,
        "totalInterest": total_interest,
        "totalPayment": principal + total_interest,
    }


@router.get("/calculators/sip")
def sip_calculator(
    monthly_amount: Decimal = Query(..., alias="monthlyAmount", gt=0, le=MAX_AMOUNT),
    years: Decimal = Query(..., gt=0, le=MAX_YEARS),
    annual_return: Decimal = Query(..., alias="annualReturn", ge=0, le=MAX_RATE_PERCENT),
) -> dict:
    maturity_value = calculate_sip_maturity(monthly_amount, years, annual_return)
    total_invested = monthly_amount * years * 12
    return {
        "maturityValue": maturity_value,
        "totalInvested": total_invested,
        "estimatedReturns": maturity_value - total_invested,
    }


@router.get("/calculators/lump-sum")
def lump_sum_calculator(
    principal: Decimal = Query(..., gt=0, le=MAX_AMOUNT),
    years: Decimal = Query(..., gt=0, le=MAX_YEARS),
    annual_return: Decimal = Query(..., alias="annualReturn", ge=0, le=MAX_RATE_PERCENT),
) -> dict:
    maturity_value = calculate_lump_sum(principal, years, annual_return)
    return {
        "maturityValue": maturity_value,
        "estimatedReturns": maturity_value - principal,
    }


@router.get("/calculators/cagr")
def cagr_calculator(
    initial_value: Decimal = Query(..., alias="initialValue", gt=0, le=MAX_AMOUNT),
    final_value: Decimal = Query(..., alias="finalValue", ge=0, le=MAX_AMOUNT),
    years: Decimal = Query(..., gt=0, le=MAX_YEARS),
) -> dict:
    return {"cagr": calculate_cagr(initial_value, final_value, years)}


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


def create_app(engine: Engine | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the API around an explicit database engine.

    Serve with ``uvicorn backend.main:create_app --factory``.
    """
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)
    if engine is None:
        engine = build_engine(settings.database_url)
    metadata.create_all(engine)

    app = FastAPI(title="Finance backend")
    app.state.engine = engine
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SQLAlchemyError, handle_database_error)
    app.include_router(router)
    logger.info("Application created", extra={"database": engine.url.render_as_string(hide_password=True)})
    return app
