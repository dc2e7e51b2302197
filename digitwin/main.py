import logging
import os
from datetime import date, datetime, timedelta
from decimal import Decimal

import bcrypt
from fastapi import FastAPI, HTTPException, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import create_engine, insert, select
from sqlalchemy.exc import IntegrityError

from digitwin import ledger
from digitwin.bank_provider import DEFAULT_SYNC_DAYS, PlaidClient
from digitwin.budget_engine import Partition, validate_amount
from digitwin.category_summary import color_for, normalize_category
from digitwin.errors import (
    AuthRequiredError,
    DomainError,
    ExternalProviderError,
    NotFoundError,
    ValidationError,
)
from digitwin.goal_tracker import remaining_to_target
from digitwin.savings_projection import project_sip
from digitwin.schema import metadata, users
from digitwin.task_planner import UTILITY_DUE_DAYS

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./digitwin.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)


def get_sync_days() -> int:
    raw = os.getenv("PLAID_SYNC_DAYS", str(DEFAULT_SYNC_DAYS))
    try:
        days = int(raw)
    except ValueError:
        return DEFAULT_SYNC_DAYS
    return days if days > 0 else DEFAULT_SYNC_DAYS


SYNC_DAYS = get_sync_days()
BANK_PROVIDER = PlaidClient.from_env()


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


@app.exception_handler(DomainError)
async def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
    content = {"detail": str(exc)}
    if isinstance(exc, ExternalProviderError):
        logger.warning("Bank provider call failed on %s: %s", request.url.path, exc)
        if exc.code:
            content["code"] = exc.code
    return JSONResponse(status_code=exc.status_code, content=content)


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime | None = None


def _clean_names(values: list[str]) -> list[str]:
    cleaned: list[str] = []
    for value in values:
        value = value.strip()
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


class ProfilePayload(BaseModel):
    monthly_income: Decimal = Decimal("0")
    monthly_budget: Decimal = Decimal("0")
    has_home_loan: bool = False
    home_loan_amount: Decimal = Decimal("0")
    uses_card: bool = False
    credit_card_types: list[str] = []
    pays_rent: bool = True
    utility_bills: dict[str, bool] | None = None
    savings_goal: Decimal = Decimal("0")
    has_savings_goal_reminder: bool = False
    expense_categories: list[str] = []

    @classmethod
    def validate_payload(cls, payload: "ProfilePayload") -> "ProfilePayload":
        payload.monthly_income = validate_amount(payload.monthly_income, allow_zero=True)
        payload.monthly_budget = validate_amount(payload.monthly_budget, allow_zero=True)
        payload.savings_goal = validate_amount(payload.savings_goal, allow_zero=True)
        if payload.has_home_loan:
            payload.home_loan_amount = validate_amount(payload.home_loan_amount, allow_zero=True)
        else:
            payload.home_loan_amount = Decimal("0")
        payload.credit_card_types = _clean_names(payload.credit_card_types)
        payload.expense_categories = _clean_names(payload.expense_categories)
        if payload.utility_bills is not None:
            unknown = set(payload.utility_bills) - set(UTILITY_DUE_DAYS)
            if unknown:
                raise ValidationError(f"Unknown utility bill: {sorted(unknown)[0]}")
        return payload


class TaskPreferencesPayload(BaseModel):
    has_home_loan: bool | None = None
    uses_card: bool | None = None
    credit_card_types: list[str] | None = None
    pays_rent: bool | None = None
    utility_bills: dict[str, bool] | None = None
    savings_goal: Decimal | None = None
    has_savings_goal_reminder: bool | None = None

    @classmethod
    def validate_payload(cls, payload: "TaskPreferencesPayload") -> "TaskPreferencesPayload":
        if payload.credit_card_types is not None:
            payload.credit_card_types = _clean_names(payload.credit_card_types)
        if payload.savings_goal is not None:
            payload.savings_goal = validate_amount(payload.savings_goal, allow_zero=True)
        if payload.utility_bills is not None:
            unknown = set(payload.utility_bills) - set(UTILITY_DUE_DAYS)
            if unknown:
                raise ValidationError(f"Unknown utility bill: {sorted(unknown)[0]}")
        return payload


class ProfileResponse(BaseModel):
    user_id: int
    monthly_income: Decimal
    monthly_budget: Decimal
    has_home_loan: bool
    home_loan_amount: Decimal
    uses_card: bool
    credit_card_types: list[str]
    pays_rent: bool
    utility_bills: dict[str, bool]
    savings_goal: Decimal
    has_savings_goal_reminder: bool
    expense_categories: list[str]


class ExpensePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    amount: Decimal
    category: str | None = None
    expense_date: date | None = Field(None, alias="date")
    note: str | None = None

    @classmethod
    def validate_payload(cls, payload: "ExpensePayload") -> "ExpensePayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValidationError("Expense name required.")
        payload.amount = validate_amount(payload.amount)
        payload.note = payload.note.strip() if payload.note else None
        return payload


class ExpenseUpdatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    amount: Decimal | None = None
    category: str | None = None
    expense_date: date | None = Field(None, alias="date")
    note: str | None = None


class ExpenseResponse(BaseModel):
    id: int
    user_id: int
    name: str
    amount: Decimal
    category: str
    date: date
    note: str | None = None
    month: int
    year: int
    color: str


class BudgetResponse(BaseModel):
    id: str
    user_id: int
    month: int
    year: int
    budget: Decimal
    spent: Decimal
    remaining: Decimal
    percent_spent: int


class ExpenseWriteResponse(BaseModel):
    expense: ExpenseResponse
    budget: BudgetResponse


class BudgetUpdatePayload(BaseModel):
    budget: Decimal


class CategorySummaryResponse(BaseModel):
    category: str
    total: Decimal
    percentage: int
    color: str


class CategoryComparisonEntry(BaseModel):
    category: str
    color: str
    totals: dict[str, Decimal]


class BudgetComparisonResponse(BaseModel):
    months: list[str]
    categories: list[CategoryComparisonEntry]


class GoalPayload(BaseModel):
    name: str
    saved: Decimal = Decimal("0")
    target: Decimal


class GoalUpdatePayload(BaseModel):
    name: str | None = None
    saved: Decimal | None = None
    target: Decimal | None = None


class GoalResponse(BaseModel):
    id: int
    user_id: int
    name: str
    saved: Decimal
    target: Decimal
    percent_complete: int
    remaining: Decimal
    celebrated: bool
    created_at: datetime | None = None


class GoalWriteResponse(BaseModel):
    goal: GoalResponse
    newly_completed: bool


class GoalDeleteResponse(BaseModel):
    status: str
    message: str


class TaskPayload(BaseModel):
    description: str
    due_date: date | None = None


class TaskUpdatePayload(BaseModel):
    description: str | None = None
    due_date: date | None = None
    completed: bool | None = None


class TaskResponse(BaseModel):
    id: int
    user_id: int
    description: str
    due_date: date
    completed: bool
    category: str
    month: int
    year: int


class TaskRegenerateResponse(BaseModel):
    generated: int
    tasks: list[TaskResponse]


class TransactionPayload(BaseModel):
    name: str
    amount: Decimal
    type: str = "expense"
    category: str | None = None
    date: date
    payment_method: str | None = None
    notes: str | None = None


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    external_id: str | None = None
    source: str
    name: str
    amount: Decimal
    type: str
    category: str
    date: date
    payment_method: str | None = None
    notes: str | None = None
    pending: bool


class TransactionListResponse(BaseModel):
    transactions: list[TransactionResponse]
    total_income: Decimal
    total_expenses: Decimal
    net: Decimal


class LinkTokenResponse(BaseModel):
    link_token: str


class ExchangeTokenPayload(BaseModel):
    public_token: str


class ExchangeTokenResponse(BaseModel):
    item_id: str


class SyncTransactionsPayload(BaseModel):
    item_id: str | None = None


class SyncTransactionsResponse(BaseModel):
    success: bool
    transaction_count: int


class SipProjectionResponse(BaseModel):
    monthly_investment: Decimal
    annual_return_pct: Decimal
    years: int
    invested_amount: Decimal
    estimated_returns: Decimal
    total_value: Decimal


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    if not x_user_id:
        raise AuthRequiredError("Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise ValidationError("Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise NotFoundError("User not found.")
    return user_id


def profile_response(row) -> ProfileResponse:
    return ProfileResponse(
        user_id=row["user_id"],
        monthly_income=row["monthly_income"],
        monthly_budget=row["monthly_budget"],
        has_home_loan=row["has_home_loan"],
        home_loan_amount=row["home_loan_amount"],
        uses_card=row["uses_card"],
        credit_card_types=row["credit_card_types"] or [],
        pays_rent=row["pays_rent"],
        utility_bills=row["utility_bills"] or {},
        savings_goal=row["savings_goal"],
        has_savings_goal_reminder=row["has_savings_goal_reminder"],
        expense_categories=row["expense_categories"] or [],
    )


def expense_response(row) -> ExpenseResponse:
    return ExpenseResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        amount=row["amount"],
        category=row["category"],
        date=row["date"],
        note=row["note"],
        month=row["month"],
        year=row["year"],
        color=color_for(normalize_category(row["category"])),
    )


def budget_response(row) -> BudgetResponse:
    return BudgetResponse(**ledger.aggregate_view(row))


def goal_response(row) -> GoalResponse:
    return GoalResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        saved=row["saved"],
        target=row["target"],
        percent_complete=row["percent_complete"],
        remaining=remaining_to_target(ledger.goal_state(row)),
        celebrated=row["celebrated"],
        created_at=row["created_at"],
    )


def task_response(row) -> TaskResponse:
    return TaskResponse(
        id=row["id"],
        user_id=row["user_id"],
        description=row["description"],
        due_date=row["due_date"],
        completed=row["completed"],
        category=row["category"],
        month=row["month"],
        year=row["year"],
    )


def transaction_response(row) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        user_id=row["user_id"],
        external_id=row["external_id"],
        source=row["source"],
        name=row["name"],
        amount=row["amount"],
        type=row["type"],
        category=row["category"],
        date=row["date"],
        payment_method=row["payment_method"],
        notes=row["notes"],
        pending=row["pending"],
    )


def resolve_partition(user_id: int, month: int | None, year: int | None) -> Partition:
    today = date.today()
    return Partition(
        user_id=user_id,
        month=month if month is not None else today.month,
        year=year if year is not None else today.year,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
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
    logger.info("Created user %s", row["id"])
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/profile", response_model=ProfileResponse)
def get_profile(x_user_id: str | None = Header(None, alias="x-user-id")) -> ProfileResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = ledger.require_profile(conn, user_id)
    return profile_response(row)


@app.put("/profile", response_model=ProfileResponse)
def save_profile(
    payload: ProfilePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ProfileResponse:
    user_id = get_user_id(x_user_id)
    payload = ProfilePayload.validate_payload(payload)
    values = payload.model_dump()
    if values["utility_bills"] is None:
        values.pop("utility_bills")
    with engine.begin() as conn:
        row = ledger.save_profile(conn, user_id, values, date.today())
    return profile_response(row)


@app.put("/profile/task-preferences", response_model=ProfileResponse)
def update_task_preferences(
    payload: TaskPreferencesPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ProfileResponse:
    user_id = get_user_id(x_user_id)
    payload = TaskPreferencesPayload.validate_payload(payload)
    with engine.begin() as conn:
        row = ledger.update_task_preferences(
            conn, user_id, payload.model_dump(exclude_none=True), date.today()
        )
    return profile_response(row)


@app.get("/categories", response_model=list[str])
def list_categories(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[str]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        return ledger.expense_categories(conn, user_id)


@app.get("/expenses", response_model=list[ExpenseResponse])
def list_expenses(
    period: str = Query("this_month"),
    category: str | None = Query(None),
    sort: str = Query("date_desc"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ExpenseResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = ledger.list_expenses(
            conn, user_id, date.today(), period=period, category=category, sort=sort
        )
    return [expense_response(row) for row in rows]


@app.post("/expenses", response_model=ExpenseWriteResponse)
def record_expense(
    payload: ExpensePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ExpenseWriteResponse:
    user_id = get_user_id(x_user_id)
    payload = ExpensePayload.validate_payload(payload)
    expense_date = payload.expense_date or date.today()
    with engine.begin() as conn:
        expense_id = ledger.record_expense(
            conn,
            user_id,
            name=payload.name,
            amount=payload.amount,
            category=payload.category,
            date=expense_date,
            note=payload.note,
        )
        expense = ledger.get_expense(conn, user_id, expense_id)
        budget = ledger.get_or_create_aggregate(conn, user_id, expense["month"], expense["year"])
    return ExpenseWriteResponse(expense=expense_response(expense), budget=budget_response(budget))


@app.get("/expenses/{expense_id}", response_model=ExpenseResponse)
def get_expense(
    expense_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> ExpenseResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = ledger.get_expense(conn, user_id, expense_id)
    return expense_response(row)


@app.put("/expenses/{expense_id}", response_model=ExpenseWriteResponse)
def update_expense(
    expense_id: int,
    payload: ExpenseUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> ExpenseWriteResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        expense = ledger.update_expense(
            conn, user_id, expense_id, payload.model_dump(exclude_unset=True, by_alias=True)
        )
        budget = ledger.get_or_create_aggregate(conn, user_id, expense["month"], expense["year"])
    return ExpenseWriteResponse(expense=expense_response(expense), budget=budget_response(budget))


@app.delete("/expenses/{expense_id}", response_model=BudgetResponse)
def delete_expense(
    expense_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        budget = ledger.delete_expense(conn, user_id, expense_id)
    return budget_response(budget)


@app.get("/budgets/current", response_model=BudgetResponse)
def current_budget(x_user_id: str | None = Header(None, alias="x-user-id")) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    partition = resolve_partition(user_id, None, None)
    with engine.begin() as conn:
        row = ledger.get_or_create_aggregate(conn, user_id, partition.month, partition.year)
    return budget_response(row)


@app.get("/budgets/{year}/{month}", response_model=BudgetResponse)
def get_budget(
    year: int, month: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    partition = resolve_partition(user_id, month, year)
    with engine.begin() as conn:
        row = ledger.get_or_create_aggregate(conn, user_id, partition.month, partition.year)
    return budget_response(row)


@app.put("/budgets/{year}/{month}", response_model=BudgetResponse)
def set_budget(
    year: int,
    month: int,
    payload: BudgetUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    partition = resolve_partition(user_id, month, year)
    with engine.begin() as conn:
        row = ledger.set_monthly_budget(
            conn, user_id, partition.month, partition.year, payload.budget
        )
    return budget_response(row)


@app.post("/budgets/{year}/{month}/recompute", response_model=BudgetResponse)
def recompute_budget(
    year: int, month: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    partition = resolve_partition(user_id, month, year)
    with engine.begin() as conn:
        row = ledger.recompute_aggregate(conn, user_id, partition.month, partition.year)
    return budget_response(row)


@app.get("/reports/category-summary", response_model=list[CategorySummaryResponse])
def category_summary(
    month: int | None = Query(None),
    year: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategorySummaryResponse]:
    user_id = get_user_id(x_user_id)
    partition = resolve_partition(user_id, month, year)
    with engine.begin() as conn:
        totals = ledger.summarize_by_category(conn, user_id, partition.month, partition.year)
    return [
        CategorySummaryResponse(
            category=item.category,
            total=item.total,
            percentage=item.percentage,
            color=item.color,
        )
        for item in totals
    ]


@app.get("/reports/budget-comparison", response_model=BudgetComparisonResponse)
def budget_comparison(
    months: int = Query(3),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BudgetComparisonResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        labels, comparisons = ledger.budget_comparison(conn, user_id, date.today(), months)
    return BudgetComparisonResponse(
        months=labels,
        categories=[
            CategoryComparisonEntry(
                category=item.category,
                color=color_for(item.category),
                totals=item.totals,
            )
            for item in comparisons
        ],
    )


@app.get("/goals", response_model=list[GoalResponse])
def list_goals(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[GoalResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = ledger.list_goals(conn, user_id)
    return [goal_response(row) for row in rows]


@app.post("/goals", response_model=GoalWriteResponse)
def create_goal(
    payload: GoalPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> GoalWriteResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        goal_id, newly_completed = ledger.create_goal(
            conn, user_id, name=payload.name, saved=payload.saved, target=payload.target
        )
        row = ledger.get_goal(conn, user_id, goal_id)
    return GoalWriteResponse(goal=goal_response(row), newly_completed=newly_completed)


@app.get("/goals/{goal_id}", response_model=GoalResponse)
def get_goal(goal_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> GoalResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = ledger.get_goal(conn, user_id, goal_id)
    return goal_response(row)


@app.put("/goals/{goal_id}", response_model=GoalWriteResponse)
def update_goal(
    goal_id: int,
    payload: GoalUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> GoalWriteResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row, newly_completed = ledger.update_goal(
            conn,
            user_id,
            goal_id,
            name=payload.name,
            saved=payload.saved,
            target=payload.target,
        )
    return GoalWriteResponse(goal=goal_response(row), newly_completed=newly_completed)


@app.delete("/goals/{goal_id}", response_model=GoalDeleteResponse)
def delete_goal(
    goal_id: int,
    reason: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> GoalDeleteResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        message = ledger.delete_goal(conn, user_id, goal_id, reason)
    return GoalDeleteResponse(status="deleted", message=message)


@app.get("/tasks", response_model=list[TaskResponse])
def list_tasks(
    month: int | None = Query(None),
    year: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[TaskResponse]:
    user_id = get_user_id(x_user_id)
    partition = resolve_partition(user_id, month, year)
    with engine.begin() as conn:
        rows = ledger.list_tasks(conn, user_id, partition.month, partition.year)
    return [task_response(row) for row in rows]


@app.post("/tasks", response_model=TaskResponse)
def add_task(
    payload: TaskPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TaskResponse:
    user_id = get_user_id(x_user_id)
    today = date.today()
    due_date = payload.due_date or today + timedelta(days=1)
    with engine.begin() as conn:
        task_id = ledger.add_task(conn, user_id, payload.description, due_date, today)
        row = ledger.get_task(conn, user_id, task_id)
    return task_response(row)


@app.post("/tasks/regenerate", response_model=TaskRegenerateResponse)
def regenerate_tasks(x_user_id: str | None = Header(None, alias="x-user-id")) -> TaskRegenerateResponse:
    user_id = get_user_id(x_user_id)
    partition = resolve_partition(user_id, None, None)
    with engine.begin() as conn:
        generated = ledger.regenerate_tasks(conn, user_id, partition.month, partition.year)
        rows = ledger.list_tasks(conn, user_id, partition.month, partition.year)
    return TaskRegenerateResponse(generated=generated, tasks=[task_response(row) for row in rows])


@app.put("/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: int,
    payload: TaskUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TaskResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = ledger.update_task(
            conn,
            user_id,
            task_id,
            description=payload.description,
            due_date=payload.due_date,
            completed=payload.completed,
        )
    return task_response(row)


@app.delete("/tasks/{task_id}")
def delete_task(task_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        ledger.delete_task(conn, user_id, task_id)
    return {"status": "deleted"}


@app.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TransactionListResponse:
    user_id = get_user_id(x_user_id)
    if start_date and end_date and start_date > end_date:
        raise ValidationError("Start date must be on or before end date.")
    with engine.begin() as conn:
        rows = ledger.list_transactions(conn, user_id, start_date, end_date)
    totals = ledger.summarize_transactions(rows)
    return TransactionListResponse(
        transactions=[transaction_response(row) for row in rows],
        total_income=totals["income"],
        total_expenses=totals["expenses"],
        net=totals["net"],
    )


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(
    payload: TransactionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        transaction_id = ledger.record_transaction(
            conn,
            user_id,
            name=payload.name,
            amount=payload.amount,
            type=payload.type,
            category=payload.category,
            date=payload.date,
            payment_method=payload.payment_method,
            notes=payload.notes,
        )
        row = ledger.get_transaction(conn, user_id, transaction_id)
    return transaction_response(row)


@app.post("/plaid/link-token", response_model=LinkTokenResponse)
def create_link_token(x_user_id: str | None = Header(None, alias="x-user-id")) -> LinkTokenResponse:
    user_id = get_user_id(x_user_id)
    return LinkTokenResponse(link_token=BANK_PROVIDER.create_link_token(user_id))


@app.post("/plaid/exchange-token", response_model=ExchangeTokenResponse)
def exchange_token(
    payload: ExchangeTokenPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> ExchangeTokenResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        item = ledger.link_bank_account(conn, user_id, BANK_PROVIDER, payload.public_token)
    return ExchangeTokenResponse(item_id=item.item_id)


@app.post("/plaid/sync-transactions", response_model=SyncTransactionsResponse)
def sync_transactions(
    payload: SyncTransactionsPayload | None = None,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> SyncTransactionsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        item_id = payload.item_id if payload else None
        access_token = ledger.resolve_access_token(conn, user_id, item_id)
        count = ledger.import_transactions(
            conn, user_id, BANK_PROVIDER, access_token, date.today(), SYNC_DAYS
        )
    return SyncTransactionsResponse(success=True, transaction_count=count)


@app.get("/tools/sip", response_model=SipProjectionResponse)
def sip_projection(
    monthly_investment: Decimal = Query(...),
    annual_return_pct: Decimal = Query(...),
    years: int = Query(...),
) -> SipProjectionResponse:
    projection = project_sip(monthly_investment, annual_return_pct, years)
    return SipProjectionResponse(
        monthly_investment=monthly_investment,
        annual_return_pct=annual_return_pct,
        years=years,
        invested_amount=projection.invested_amount,
        estimated_returns=projection.estimated_returns,
        total_value=projection.total_value,
    )
