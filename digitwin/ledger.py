"""
Ledger services over a SQLAlchemy connection.

Every function takes an open ``Connection`` (the caller owns the
transaction) and the id of the authenticated user whose records it touches.
Aggregate arithmetic and derivations live in the pure engines; this module
reads and writes rows.

Budget aggregates are maintained two ways, one per code path:

* recording an expense issues a single server-side increment of ``spent``
  and ``remaining`` so concurrent writers to the same partition cannot lose
  an update;
* editing or deleting an expense re-sums the partition from the expense
  rows and overwrites the totals, which is idempotent and safe to re-run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Optional

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection

from digitwin import budget_engine, category_summary, goal_tracker, task_planner
from digitwin.bank_provider import (
    DEFAULT_SYNC_DAYS,
    BankProvider,
    LinkedItem,
    normalize_amount,
    sync_window,
)
from digitwin.budget_engine import BudgetAggregate, Partition, ZERO
from digitwin.category_summary import DEFAULT_CATEGORY, CategorizedAmount
from digitwin.errors import NotFoundError, ValidationError
from digitwin.schema import (
    budgets,
    expenses,
    financial_tasks,
    plaid_items,
    savings_goals,
    transactions,
    user_profiles,
    users,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPENSE_CATEGORIES = ["Housing", "Food", "Transport", "Shopping", "Other"]
EXPENSE_PERIODS = {"this_month", "last_month", "all"}
EXPENSE_SORTS = {
    "date_desc": (expenses.c.date.desc(), expenses.c.id.desc()),
    "date_asc": (expenses.c.date.asc(), expenses.c.id.asc()),
    "amount_desc": (expenses.c.amount.desc(), expenses.c.id.desc()),
    "amount_asc": (expenses.c.amount.asc(), expenses.c.id.asc()),
}
TRANSACTION_TYPES = {"expense", "income"}

PROFILE_FIELDS = (
    "monthly_income",
    "monthly_budget",
    "has_home_loan",
    "home_loan_amount",
    "uses_card",
    "credit_card_types",
    "pays_rent",
    "utility_bills",
    "savings_goal",
    "has_savings_goal_reminder",
    "expense_categories",
)
TASK_PREFERENCE_FIELDS = (
    "has_home_loan",
    "uses_card",
    "credit_card_types",
    "pays_rent",
    "utility_bills",
    "savings_goal",
    "has_savings_goal_reminder",
)


def require_user(conn: Connection, user_id: int) -> None:
    exists = conn.execute(select(users.c.id).where(users.c.id == user_id)).first()
    if not exists:
        raise NotFoundError("User not found.")


def _dialect_insert(conn: Connection, table):
    dialect = conn.dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise ValueError(f"Unsupported database dialect: {dialect}")


# Profiles -----------------------------------------------------------------


@dataclass(frozen=True)
class ProfileChanged:
    user_id: int
    month: int
    year: int


ProfileListener = Callable[[Connection, ProfileChanged], None]


def get_profile(conn: Connection, user_id: int) -> Optional[Mapping[str, Any]]:
    return conn.execute(
        select(user_profiles).where(user_profiles.c.user_id == user_id)
    ).mappings().first()


def require_profile(conn: Connection, user_id: int) -> Mapping[str, Any]:
    profile = get_profile(conn, user_id)
    if not profile:
        raise NotFoundError("Profile not found.")
    return profile


def save_profile(
    conn: Connection, user_id: int, values: Mapping[str, Any], today: date
) -> Mapping[str, Any]:
    """Create or replace the onboarding profile.

    Also seeds this month's budget aggregate from the monthly budget when the
    month has none yet, and rebuilds the month's derived tasks.
    """
    require_user(conn, user_id)
    row = {name: values[name] for name in PROFILE_FIELDS if name in values}
    if not row.get("expense_categories"):
        row["expense_categories"] = list(DEFAULT_EXPENSE_CATEGORIES)
    row.setdefault("credit_card_types", [])
    row.setdefault("utility_bills", dict(task_planner.DEFAULT_UTILITY_BILLS))

    stmt = _dialect_insert(conn, user_profiles).values(user_id=user_id, **row)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={**row, "updated_at": datetime.utcnow()},
    )
    conn.execute(stmt)

    get_or_create_aggregate(conn, user_id, today.month, today.year)
    _emit_profile_changed(conn, ProfileChanged(user_id, today.month, today.year))
    return require_profile(conn, user_id)


def update_task_preferences(
    conn: Connection, user_id: int, values: Mapping[str, Any], today: date
) -> Mapping[str, Any]:
    require_profile(conn, user_id)
    changes = {name: values[name] for name in TASK_PREFERENCE_FIELDS if name in values}
    if changes:
        conn.execute(
            update(user_profiles)
            .where(user_profiles.c.user_id == user_id)
            .values(**changes, updated_at=datetime.utcnow())
        )
    _emit_profile_changed(conn, ProfileChanged(user_id, today.month, today.year))
    return require_profile(conn, user_id)


def preferences_from_profile(profile: Mapping[str, Any]) -> task_planner.TaskPreferences:
    utility_bills = profile["utility_bills"] or dict(task_planner.DEFAULT_UTILITY_BILLS)
    return task_planner.TaskPreferences(
        has_home_loan=bool(profile["has_home_loan"]),
        uses_card=bool(profile["uses_card"]),
        credit_card_types=tuple(profile["credit_card_types"] or ()),
        pays_rent=bool(profile["pays_rent"]),
        utility_bills=utility_bills,
        savings_goal=budget_engine.coerce_amount(profile["savings_goal"]),
        has_savings_goal_reminder=bool(profile["has_savings_goal_reminder"]),
    )


def expense_categories(conn: Connection, user_id: int) -> list[str]:
    profile = get_profile(conn, user_id)
    configured = list(profile["expense_categories"] or []) if profile else []
    if not configured:
        configured = list(DEFAULT_EXPENSE_CATEGORIES)
    if DEFAULT_CATEGORY not in configured:
        configured.append(DEFAULT_CATEGORY)
    return configured


def _rebuild_tasks_on_profile_change(conn: Connection, event: ProfileChanged) -> None:
    regenerate_tasks(conn, event.user_id, event.month, event.year)


PROFILE_LISTENERS: list[ProfileListener] = [_rebuild_tasks_on_profile_change]


def _emit_profile_changed(conn: Connection, event: ProfileChanged) -> None:
    for listener in PROFILE_LISTENERS:
        listener(conn, event)


# Budget aggregates --------------------------------------------------------


def aggregate_view(row: Mapping[str, Any]) -> dict[str, Any]:
    aggregate = BudgetAggregate(
        budget=budget_engine.coerce_amount(row["budget"]),
        spent=budget_engine.coerce_amount(row["spent"]),
    )
    return {
        "id": row["id"],
        "user_id": row["user_id"],
        "month": row["month"],
        "year": row["year"],
        "budget": aggregate.budget,
        "spent": aggregate.spent,
        "remaining": aggregate.remaining,
        "percent_spent": aggregate.percent_spent,
    }


def _select_aggregate(conn: Connection, partition: Partition) -> Optional[Mapping[str, Any]]:
    return conn.execute(
        select(budgets).where(budgets.c.id == partition.key)
    ).mappings().first()


def get_or_create_aggregate(
    conn: Connection, user_id: int, month: int, year: int
) -> Mapping[str, Any]:
    """Fetch the partition's aggregate, seeding it from the profile on a miss.

    A seeded aggregate starts with ``spent = 0`` and does not scan existing
    expenses; call :func:`recompute_aggregate` to fold those in.
    """
    partition = Partition(user_id=user_id, month=month, year=year)
    row = _select_aggregate(conn, partition)
    if row:
        return row

    profile = get_profile(conn, user_id)
    seed_budget = budget_engine.coerce_amount(profile["monthly_budget"]) if profile else ZERO
    stmt = _dialect_insert(conn, budgets).values(
        id=partition.key,
        user_id=user_id,
        month=month,
        year=year,
        budget=seed_budget,
        spent=ZERO,
        remaining=seed_budget,
    )
    conn.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))
    return _select_aggregate(conn, partition)


def _increment_aggregate(conn: Connection, partition: Partition, amount: Decimal) -> None:
    new_spent = budgets.c.spent + amount
    conn.execute(
        update(budgets)
        .where(budgets.c.id == partition.key)
        .values(
            spent=new_spent,
            remaining=budgets.c.budget - new_spent,
            updated_at=datetime.utcnow(),
        )
    )


def recompute_aggregate(conn: Connection, user_id: int, month: int, year: int) -> Mapping[str, Any]:
    row = get_or_create_aggregate(conn, user_id, month, year)
    amounts = conn.execute(
        select(expenses.c.amount).where(
            expenses.c.user_id == user_id,
            expenses.c.month == month,
            expenses.c.year == year,
        )
    ).scalars().all()
    aggregate = budget_engine.recompute(row["budget"], amounts)
    conn.execute(
        update(budgets)
        .where(budgets.c.id == row["id"])
        .values(
            spent=aggregate.spent,
            remaining=aggregate.remaining,
            updated_at=datetime.utcnow(),
        )
    )
    logger.info(
        "Recomputed budget %s from %d expenses: spent=%s", row["id"], len(amounts), aggregate.spent
    )
    return _select_aggregate(conn, Partition(user_id=user_id, month=month, year=year))


def set_monthly_budget(
    conn: Connection, user_id: int, month: int, year: int, amount: Decimal
) -> Mapping[str, Any]:
    amount = budget_engine.validate_amount(amount, allow_zero=True)
    row = get_or_create_aggregate(conn, user_id, month, year)
    conn.execute(
        update(budgets)
        .where(budgets.c.id == row["id"])
        .values(
            budget=amount,
            remaining=amount - budgets.c.spent,
            updated_at=datetime.utcnow(),
        )
    )
    return _select_aggregate(conn, Partition(user_id=user_id, month=month, year=year))


# Expenses -----------------------------------------------------------------


def _validate_expense_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Expense name required.")
    return name


def _validate_expense_category(conn: Connection, user_id: int, category: Optional[str]) -> str:
    category = category if category and category.strip() else DEFAULT_CATEGORY
    profile = get_profile(conn, user_id)
    if profile and profile["expense_categories"]:
        allowed = expense_categories(conn, user_id)
        if category not in allowed:
            raise ValidationError(f"Unknown expense category: {category}")
    return category


def record_expense(
    conn: Connection,
    user_id: int,
    *,
    name: str,
    amount: Decimal,
    category: Optional[str],
    date: date,
    note: Optional[str] = None,
) -> int:
    require_user(conn, user_id)
    amount = budget_engine.validate_amount(amount)
    name = _validate_expense_name(name)
    category = _validate_expense_category(conn, user_id, category)
    partition = Partition.for_date(user_id, date)

    result = conn.execute(
        insert(expenses).values(
            user_id=user_id,
            name=name,
            amount=amount,
            category=category,
            date=date,
            note=note.strip() if note else None,
            month=partition.month,
            year=partition.year,
        )
    )
    expense_id = result.inserted_primary_key[0]

    get_or_create_aggregate(conn, user_id, partition.month, partition.year)
    _increment_aggregate(conn, partition, amount)
    logger.info("Recorded expense %s of %s in budget %s", expense_id, amount, partition.key)
    return expense_id


def get_expense(conn: Connection, user_id: int, expense_id: int) -> Mapping[str, Any]:
    row = conn.execute(
        select(expenses).where(expenses.c.id == expense_id, expenses.c.user_id == user_id)
    ).mappings().first()
    if not row:
        raise NotFoundError("Expense not found.")
    return row


def list_expenses(
    conn: Connection,
    user_id: int,
    today: date,
    *,
    period: str = "this_month",
    category: Optional[str] = None,
    sort: str = "date_desc",
) -> list[Mapping[str, Any]]:
    if period not in EXPENSE_PERIODS:
        raise ValidationError("Invalid period.")
    if sort not in EXPENSE_SORTS:
        raise ValidationError("Invalid sort order.")

    conditions = [expenses.c.user_id == user_id]
    if period != "all":
        partition = Partition.for_date(user_id, today)
        if period == "last_month":
            partition = partition.shift(-1)
        conditions.extend([expenses.c.month == partition.month, expenses.c.year == partition.year])
    if category is not None and category != "all":
        conditions.append(expenses.c.category == category)

    return conn.execute(
        select(expenses).where(*conditions).order_by(*EXPENSE_SORTS[sort])
    ).mappings().all()


def update_expense(
    conn: Connection, user_id: int, expense_id: int, changes: Mapping[str, Any]
) -> Mapping[str, Any]:
    current = get_expense(conn, user_id, expense_id)
    values: dict[str, Any] = {}
    if "amount" in changes and changes["amount"] is not None:
        values["amount"] = budget_engine.validate_amount(changes["amount"])
    if changes.get("name") is not None:
        values["name"] = _validate_expense_name(changes["name"])
    # An unchanged category is not re-checked against the profile.
    category = changes.get("category")
    if category is not None and category != current["category"]:
        values["category"] = _validate_expense_category(conn, user_id, category)
    if "note" in changes:
        values["note"] = changes["note"].strip() if changes["note"] else None
    if changes.get("date") is not None:
        values["date"] = changes["date"]
        values["month"] = changes["date"].month
        values["year"] = changes["date"].year

    if values:
        conn.execute(update(expenses).where(expenses.c.id == expense_id).values(**values))

    affected = {(current["month"], current["year"])}
    affected.add((values.get("month", current["month"]), values.get("year", current["year"])))
    for month, year in sorted(affected, key=lambda item: (item[1], item[0])):
        recompute_aggregate(conn, user_id, month, year)
    return get_expense(conn, user_id, expense_id)


def delete_expense(conn: Connection, user_id: int, expense_id: int) -> Mapping[str, Any]:
    current = get_expense(conn, user_id, expense_id)
    conn.execute(delete(expenses).where(expenses.c.id == expense_id))
    logger.info("Deleted expense %s", expense_id)
    return recompute_aggregate(conn, user_id, current["month"], current["year"])


# Category views -----------------------------------------------------------


def _partition_amounts(
    conn: Connection, user_id: int, month: int, year: int
) -> list[CategorizedAmount]:
    rows = conn.execute(
        select(expenses.c.category, expenses.c.amount).where(
            expenses.c.user_id == user_id,
            expenses.c.month == month,
            expenses.c.year == year,
        ).order_by(expenses.c.id.asc())
    ).all()
    return [CategorizedAmount(amount=row.amount, category=row.category) for row in rows]


def summarize_by_category(
    conn: Connection, user_id: int, month: int, year: int
) -> list[category_summary.CategoryTotal]:
    partition = Partition(user_id=user_id, month=month, year=year)
    return category_summary.summarize_by_category(
        _partition_amounts(conn, user_id, partition.month, partition.year)
    )


def budget_comparison(
    conn: Connection, user_id: int, today: date, months: int = 3
) -> tuple[list[str], list[category_summary.CategoryComparison]]:
    if months < 1 or months > 12:
        raise ValidationError("Comparison covers between 1 and 12 months.")
    current = Partition.for_date(user_id, today)
    periods = []
    for offset in range(months):
        partition = current.shift(-offset)
        label = f"{partition.year:04d}-{partition.month:02d}"
        periods.append((label, _partition_amounts(conn, user_id, partition.month, partition.year)))
    return [label for label, _ in periods], category_summary.compare_periods(periods)


# Goals --------------------------------------------------------------------


def goal_state(row: Mapping[str, Any]) -> goal_tracker.GoalState:
    return goal_tracker.GoalState(
        name=row["name"],
        saved=budget_engine.coerce_amount(row["saved"]),
        target=budget_engine.coerce_amount(row["target"]),
        celebrated=bool(row["celebrated"]),
    )


def create_goal(
    conn: Connection, user_id: int, *, name: str, saved: Decimal, target: Decimal
) -> tuple[int, bool]:
    require_user(conn, user_id)
    outcome = goal_tracker.new_goal(name, saved, target)
    state = outcome.state
    result = conn.execute(
        insert(savings_goals).values(
            user_id=user_id,
            name=state.name,
            saved=state.saved,
            target=state.target,
            percent_complete=state.percent_complete,
            celebrated=state.celebrated,
        )
    )
    return result.inserted_primary_key[0], outcome.newly_completed


def get_goal(conn: Connection, user_id: int, goal_id: int) -> Mapping[str, Any]:
    row = conn.execute(
        select(savings_goals).where(
            savings_goals.c.id == goal_id, savings_goals.c.user_id == user_id
        )
    ).mappings().first()
    if not row:
        raise NotFoundError("Goal not found.")
    return row


def list_goals(conn: Connection, user_id: int) -> list[Mapping[str, Any]]:
    return conn.execute(
        select(savings_goals)
        .where(savings_goals.c.user_id == user_id)
        .order_by(savings_goals.c.created_at.asc(), savings_goals.c.id.asc())
    ).mappings().all()


def update_goal(
    conn: Connection,
    user_id: int,
    goal_id: int,
    *,
    name: Optional[str] = None,
    saved: Optional[Decimal] = None,
    target: Optional[Decimal] = None,
) -> tuple[Mapping[str, Any], bool]:
    current = get_goal(conn, user_id, goal_id)
    outcome = goal_tracker.apply_update(goal_state(current), name=name, saved=saved, target=target)
    state = outcome.state
    conn.execute(
        update(savings_goals)
        .where(savings_goals.c.id == goal_id)
        .values(
            name=state.name,
            saved=state.saved,
            target=state.target,
            percent_complete=state.percent_complete,
            celebrated=state.celebrated,
        )
    )
    if outcome.newly_completed:
        logger.info("Goal %s reached its target", goal_id)
    return get_goal(conn, user_id, goal_id), outcome.newly_completed


def delete_goal(conn: Connection, user_id: int, goal_id: int, reason: Optional[str]) -> str:
    reason = goal_tracker.validate_delete_reason(reason)
    current = get_goal(conn, user_id, goal_id)
    conn.execute(delete(savings_goals).where(savings_goals.c.id == goal_id))
    logger.info("Deleted goal %s (reason: %s)", goal_id, reason)
    return goal_tracker.farewell_message(current["percent_complete"])


# Tasks --------------------------------------------------------------------


def list_tasks(conn: Connection, user_id: int, month: int, year: int) -> list[Mapping[str, Any]]:
    return conn.execute(
        select(financial_tasks)
        .where(
            financial_tasks.c.user_id == user_id,
            financial_tasks.c.month == month,
            financial_tasks.c.year == year,
        )
        .order_by(financial_tasks.c.due_date.asc(), financial_tasks.c.id.asc())
    ).mappings().all()


def regenerate_tasks(conn: Connection, user_id: int, month: int, year: int) -> int:
    """Drop the month's derived tasks and insert the set the profile implies.

    Custom tasks the user typed in are not derived from the profile and are
    left alone.
    """
    profile = require_profile(conn, user_id)
    conn.execute(
        delete(financial_tasks).where(
            financial_tasks.c.user_id == user_id,
            financial_tasks.c.month == month,
            financial_tasks.c.year == year,
            financial_tasks.c.category != "custom",
        )
    )
    planned = task_planner.plan_monthly_tasks(preferences_from_profile(profile), month, year)
    if planned:
        conn.execute(
            insert(financial_tasks),
            [
                {
                    "user_id": user_id,
                    "description": task.description,
                    "due_date": task.due_date,
                    "completed": False,
                    "category": task.category,
                    "month": month,
                    "year": year,
                }
                for task in planned
            ],
        )
    logger.info("Regenerated %d tasks for user %s in %d-%d", len(planned), user_id, month, year)
    return len(planned)


def add_task(
    conn: Connection, user_id: int, description: str, due_date: date, today: date
) -> int:
    require_user(conn, user_id)
    description = (description or "").strip()
    if not description:
        raise ValidationError("Task description required.")
    # Custom tasks belong to the month they were added in, like derived ones.
    result = conn.execute(
        insert(financial_tasks).values(
            user_id=user_id,
            description=description,
            due_date=due_date,
            completed=False,
            category="custom",
            month=today.month,
            year=today.year,
        )
    )
    return result.inserted_primary_key[0]


def get_task(conn: Connection, user_id: int, task_id: int) -> Mapping[str, Any]:
    row = conn.execute(
        select(financial_tasks).where(
            financial_tasks.c.id == task_id, financial_tasks.c.user_id == user_id
        )
    ).mappings().first()
    if not row:
        raise NotFoundError("Task not found.")
    return row


def update_task(
    conn: Connection,
    user_id: int,
    task_id: int,
    *,
    description: Optional[str] = None,
    due_date: Optional[date] = None,
    completed: Optional[bool] = None,
) -> Mapping[str, Any]:
    get_task(conn, user_id, task_id)
    values: dict[str, Any] = {}
    if description is not None:
        description = description.strip()
        if not description:
            raise ValidationError("Task description required.")
        values["description"] = description
    if due_date is not None:
        values["due_date"] = due_date
    if completed is not None:
        values["completed"] = completed
    if values:
        conn.execute(update(financial_tasks).where(financial_tasks.c.id == task_id).values(**values))
    return get_task(conn, user_id, task_id)


def delete_task(conn: Connection, user_id: int, task_id: int) -> None:
    get_task(conn, user_id, task_id)
    conn.execute(delete(financial_tasks).where(financial_tasks.c.id == task_id))


# Transactions & bank link -------------------------------------------------


def record_transaction(
    conn: Connection,
    user_id: int,
    *,
    name: str,
    amount: Decimal,
    type: str,
    category: Optional[str],
    date: date,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> int:
    require_user(conn, user_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Transaction name required.")
    txn_type = (type or "").strip().lower()
    if txn_type not in TRANSACTION_TYPES:
        raise ValidationError("Invalid transaction type.")
    amount = budget_engine.validate_amount(amount)
    result = conn.execute(
        insert(transactions).values(
            user_id=user_id,
            source="manual",
            name=name,
            amount=amount,
            type=txn_type,
            category=category_summary.normalize_category(category),
            date=date,
            payment_method=payment_method,
            notes=notes.strip() if notes else None,
        )
    )
    return result.inserted_primary_key[0]


def get_transaction(conn: Connection, user_id: int, transaction_id: int) -> Mapping[str, Any]:
    row = conn.execute(
        select(transactions).where(
            transactions.c.id == transaction_id, transactions.c.user_id == user_id
        )
    ).mappings().first()
    if not row:
        raise NotFoundError("Transaction not found.")
    return row


def list_transactions(
    conn: Connection,
    user_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[Mapping[str, Any]]:
    conditions = [transactions.c.user_id == user_id]
    if start_date is not None:
        conditions.append(transactions.c.date >= start_date)
    if end_date is not None:
        conditions.append(transactions.c.date <= end_date)
    return conn.execute(
        select(transactions)
        .where(and_(*conditions))
        .order_by(transactions.c.date.desc(), transactions.c.id.desc())
    ).mappings().all()


def save_linked_item(conn: Connection, user_id: int, item: LinkedItem) -> None:
    require_user(conn, user_id)
    stmt = _dialect_insert(conn, plaid_items).values(
        user_id=user_id,
        item_id=item.item_id,
        access_token=item.access_token,
        institution_id=item.institution_id,
    )
    conn.execute(
        stmt.on_conflict_do_update(
            index_elements=["user_id", "item_id"],
            set_={"access_token": item.access_token, "institution_id": item.institution_id},
        )
    )
    logger.info("Linked bank item %s for user %s", item.item_id, user_id)


def resolve_access_token(conn: Connection, user_id: int, item_id: Optional[str] = None) -> str:
    """Access token of one of the user's linked items, the most recent by default."""
    conditions = [plaid_items.c.user_id == user_id]
    if item_id is not None:
        conditions.append(plaid_items.c.item_id == item_id)
    token = conn.execute(
        select(plaid_items.c.access_token)
        .where(*conditions)
        .order_by(plaid_items.c.created_at.desc(), plaid_items.c.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    if not token:
        raise NotFoundError("No linked bank account.")
    return token


def import_transactions(
    conn: Connection,
    user_id: int,
    provider: BankProvider,
    access_token: str,
    today: date,
    days: int = DEFAULT_SYNC_DAYS,
) -> int:
    """Pull the provider's recent transactions into the user's ledger.

    Rows are keyed by the provider's transaction id, so repeated syncs update
    in place instead of duplicating. A posted transaction replaces the pending
    row it supersedes. Returns the number of rows written.
    """
    require_user(conn, user_id)
    if not access_token:
        raise ValidationError("Access token required.")
    start_date, end_date = sync_window(today, days)
    fetched = provider.fetch_transactions(access_token, start_date, end_date)

    superseded = {item.pending_transaction_id for item in fetched if item.pending_transaction_id}
    written = 0
    for item in fetched:
        if item.amount == 0 or item.transaction_id in superseded:
            continue
        if item.pending_transaction_id:
            conn.execute(
                delete(transactions).where(
                    transactions.c.user_id == user_id,
                    transactions.c.external_id == item.pending_transaction_id,
                )
            )
        txn_type, magnitude = normalize_amount(item.amount)
        values = {
            "name": item.name,
            "amount": magnitude,
            "type": txn_type,
            "category": category_summary.normalize_category(item.category),
            "date": item.date,
            "account_ref": item.account_id,
            "pending": item.pending,
        }
        stmt = _dialect_insert(conn, transactions).values(
            user_id=user_id, external_id=item.transaction_id, source="plaid", **values
        )
        conn.execute(
            stmt.on_conflict_do_update(index_elements=["user_id", "external_id"], set_=values)
        )
        written += 1

    conn.execute(
        update(plaid_items)
        .where(plaid_items.c.user_id == user_id, plaid_items.c.access_token == access_token)
        .values(last_synced_at=datetime.utcnow())
    )
    logger.info(
        "Imported %d of %d provider transactions for user %s", written, len(fetched), user_id
    )
    return written


def link_bank_account(
    conn: Connection, user_id: int, provider: BankProvider, public_token: str
) -> LinkedItem:
    if not public_token or not public_token.strip():
        raise ValidationError("Public token required.")
    item = provider.exchange_public_token(public_token.strip())
    save_linked_item(conn, user_id, item)
    return item


def summarize_transactions(rows: Iterable[Mapping[str, Any]]) -> dict[str, Decimal]:
    income = ZERO
    spent = ZERO
    for row in rows:
        amount = budget_engine.coerce_amount(row["amount"])
        if row["type"] == "income":
            income += amount
        else:
            spent += amount
    return {"income": income, "expenses": spent, "net": income - spent}
