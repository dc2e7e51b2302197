from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    func,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

user_profiles = Table(
    "user_profiles",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("monthly_income", Numeric(12, 2), nullable=False, server_default="0"),
    Column("monthly_budget", Numeric(12, 2), nullable=False, server_default="0"),
    Column("has_home_loan", Boolean, nullable=False, server_default="0"),
    Column("home_loan_amount", Numeric(12, 2), nullable=False, server_default="0"),
    Column("uses_card", Boolean, nullable=False, server_default="0"),
    Column("credit_card_types", JSON, nullable=False, default=list),
    Column("pays_rent", Boolean, nullable=False, server_default="1"),
    Column("utility_bills", JSON, nullable=False, default=dict),
    Column("savings_goal", Numeric(12, 2), nullable=False, server_default="0"),
    Column("has_savings_goal_reminder", Boolean, nullable=False, server_default="0"),
    Column("expense_categories", JSON, nullable=False, default=list),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now(), onupdate=func.now()),
)

expenses = Table(
    "expenses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("category", String(255), nullable=False),
    Column("date", Date, nullable=False),
    Column("note", String(500)),
    Column("month", Integer, nullable=False),
    Column("year", Integer, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_expenses_partition", "user_id", "year", "month"),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("month", Integer, nullable=False),
    Column("year", Integer, nullable=False),
    Column("budget", Numeric(12, 2), nullable=False),
    Column("spent", Numeric(12, 2), nullable=False, server_default="0"),
    Column("remaining", Numeric(12, 2), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Column("updated_at", DateTime, nullable=False, server_default=func.now(), onupdate=func.now()),
)

savings_goals = Table(
    "savings_goals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("saved", Numeric(12, 2), nullable=False),
    Column("target", Numeric(12, 2), nullable=False),
    Column("percent_complete", Integer, nullable=False),
    Column("celebrated", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

financial_tasks = Table(
    "financial_tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("description", String(500), nullable=False),
    Column("due_date", Date, nullable=False),
    Column("completed", Boolean, nullable=False, server_default="0"),
    Column("category", String(20), nullable=False),
    Column("month", Integer, nullable=False),
    Column("year", Integer, nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_financial_tasks_partition", "user_id", "year", "month"),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("external_id", String(255)),
    Column("source", String(20), nullable=False, server_default="manual"),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("type", String(20), nullable=False),
    Column("category", String(255), nullable=False),
    Column("date", Date, nullable=False),
    Column("payment_method", String(50)),
    Column("account_ref", String(255)),
    Column("notes", String(500)),
    Column("pending", Boolean, nullable=False, server_default="0"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "external_id", name="uq_transactions_user_external"),
)

plaid_items = Table(
    "plaid_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("item_id", String(255), nullable=False),
    Column("access_token", String(255), nullable=False),
    Column("institution_id", String(255)),
    Column("last_synced_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "item_id", name="uq_plaid_items_user_item"),
)
