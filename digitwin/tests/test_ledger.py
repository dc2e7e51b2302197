import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine, insert, select
from sqlalchemy.pool import StaticPool

from digitwin import ledger
from digitwin.bank_provider import ProviderTransaction, StaticBankProvider
from digitwin.errors import ExternalProviderError, NotFoundError, ValidationError
from digitwin.schema import budgets, metadata, transactions, users

TODAY = date(2025, 3, 15)


def _profile(**overrides) -> dict:
    values = {
        "monthly_income": Decimal("3000"),
        "monthly_budget": Decimal("500"),
        "has_home_loan": False,
        "home_loan_amount": Decimal("0"),
        "uses_card": False,
        "credit_card_types": [],
        "pays_rent": True,
        "utility_bills": {"electricity": True, "internet": False, "water": False, "gas": False},
        "savings_goal": Decimal("0"),
        "has_savings_goal_reminder": False,
        "expense_categories": [],
    }
    values.update(overrides)
    return values


class LedgerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        metadata.create_all(self.engine)
        with self.engine.begin() as conn:
            self.user_id = conn.execute(
                insert(users).values(email="ana@example.com", hashed_password="x")
            ).inserted_primary_key[0]
            self.other_user_id = conn.execute(
                insert(users).values(email="ben@example.com", hashed_password="x")
            ).inserted_primary_key[0]

    def tearDown(self) -> None:
        self.engine.dispose()

    def record(self, conn, amount: str, on: date = TODAY, category: str = "Food", user_id=None) -> int:
        return ledger.record_expense(
            conn,
            user_id or self.user_id,
            name="Lunch",
            amount=Decimal(amount),
            category=category,
            date=on,
        )


class BudgetAggregateTests(LedgerTestCase):
    def test_first_expense_without_profile_uses_zero_budget(self) -> None:
        with self.engine.begin() as conn:
            self.record(conn, "40")
            view = ledger.aggregate_view(ledger.get_or_create_aggregate(conn, self.user_id, 3, 2025))

        self.assertEqual(view["id"], f"{self.user_id}_3-2025")
        self.assertEqual(view["budget"], Decimal("0"))
        self.assertEqual(view["spent"], Decimal("40"))
        self.assertEqual(view["remaining"], Decimal("-40"))
        self.assertEqual(view["percent_spent"], 0)

    def test_recording_expenses_increments_seeded_aggregate(self) -> None:
        with self.engine.begin() as conn:
            ledger.save_profile(conn, self.user_id, _profile(), TODAY)
            self.record(conn, "100")
            self.record(conn, "50")
            view = ledger.aggregate_view(ledger.get_or_create_aggregate(conn, self.user_id, 3, 2025))

        self.assertEqual(view["budget"], Decimal("500"))
        self.assertEqual(view["spent"], Decimal("150"))
        self.assertEqual(view["remaining"], Decimal("350"))
        self.assertEqual(view["percent_spent"], 30)

    def test_record_rejects_invalid_amount_and_writes_nothing(self) -> None:
        with self.engine.begin() as conn:
            with self.assertRaises(ValidationError):
                self.record(conn, "-5")
            rows = conn.execute(select(budgets)).all()

        self.assertEqual(rows, [])

    def test_sub_cent_amounts_are_rejected_before_any_write(self) -> None:
        with self.engine.begin() as conn:
            self.record(conn, "1.25")
            for _ in range(3):
                with self.assertRaises(ValidationError):
                    self.record(conn, "0.004")
            expense_id = self.record(conn, "2.50")
            with self.assertRaises(ValidationError):
                ledger.update_expense(conn, self.user_id, expense_id, {"amount": Decimal("9.999")})
            incremental = ledger.aggregate_view(
                ledger.get_or_create_aggregate(conn, self.user_id, 3, 2025)
            )
            recomputed = ledger.aggregate_view(ledger.recompute_aggregate(conn, self.user_id, 3, 2025))
            stored = [row["amount"] for row in ledger.list_expenses(conn, self.user_id, TODAY)]

        self.assertEqual(incremental["spent"], Decimal("3.75"))
        self.assertEqual(recomputed["spent"], incremental["spent"])
        self.assertEqual(sorted(stored), [Decimal("1.25"), Decimal("2.50")])

    def test_recompute_matches_incremental_totals(self) -> None:
        with self.engine.begin() as conn:
            ledger.save_profile(conn, self.user_id, _profile(), TODAY)
            for amount in ("12.25", "7.75", "80"):
                self.record(conn, amount)
            incremental = ledger.aggregate_view(
                ledger.get_or_create_aggregate(conn, self.user_id, 3, 2025)
            )
            recomputed = ledger.aggregate_view(ledger.recompute_aggregate(conn, self.user_id, 3, 2025))

        self.assertEqual(incremental["spent"], Decimal("100"))
        self.assertEqual(recomputed["spent"], incremental["spent"])
        self.assertEqual(recomputed["remaining"], incremental["remaining"])

    def test_editing_expense_date_moves_spend_between_months(self) -> None:
        with self.engine.begin() as conn:
            ledger.save_profile(conn, self.user_id, _profile(), TODAY)
            expense_id = self.record(conn, "60")
            self.record(conn, "15")
            updated = ledger.update_expense(conn, self.user_id, expense_id, {"date": date(2025, 2, 10)})
            march = ledger.aggregate_view(ledger.get_or_create_aggregate(conn, self.user_id, 3, 2025))
            february = ledger.aggregate_view(
                ledger.get_or_create_aggregate(conn, self.user_id, 2, 2025)
            )

        self.assertEqual((updated["month"], updated["year"]), (2, 2025))
        self.assertEqual(march["spent"], Decimal("15"))
        self.assertEqual(february["spent"], Decimal("60"))

    def test_editing_amount_recomputes_partition(self) -> None:
        with self.engine.begin() as conn:
            expense_id = self.record(conn, "20")
            ledger.update_expense(conn, self.user_id, expense_id, {"amount": Decimal("35")})
            view = ledger.aggregate_view(ledger.get_or_create_aggregate(conn, self.user_id, 3, 2025))

        self.assertEqual(view["spent"], Decimal("35"))

    def test_deleting_expense_returns_recomputed_aggregate(self) -> None:
        with self.engine.begin() as conn:
            ledger.save_profile(conn, self.user_id, _profile(), TODAY)
            expense_id = self.record(conn, "70")
            self.record(conn, "30")
            view = ledger.aggregate_view(ledger.delete_expense(conn, self.user_id, expense_id))

        self.assertEqual(view["spent"], Decimal("30"))
        self.assertEqual(view["remaining"], Decimal("470"))

    def test_set_monthly_budget_keeps_spent(self) -> None:
        with self.engine.begin() as conn:
            self.record(conn, "25")
            view = ledger.aggregate_view(
                ledger.set_monthly_budget(conn, self.user_id, 3, 2025, Decimal("100"))
            )

        self.assertEqual(view["budget"], Decimal("100"))
        self.assertEqual(view["spent"], Decimal("25"))
        self.assertEqual(view["remaining"], Decimal("75"))
        self.assertEqual(view["percent_spent"], 25)

    def test_expenses_are_scoped_to_their_owner(self) -> None:
        with self.engine.begin() as conn:
            expense_id = self.record(conn, "10")
            with self.assertRaises(NotFoundError):
                ledger.get_expense(conn, self.other_user_id, expense_id)
            with self.assertRaises(NotFoundError):
                ledger.delete_expense(conn, self.other_user_id, expense_id)

    def test_unknown_user_cannot_record(self) -> None:
        with self.engine.begin() as conn:
            with self.assertRaises(NotFoundError):
                self.record(conn, "10", user_id=999)


class ExpenseQueryTests(LedgerTestCase):
    def test_category_must_be_configured_when_profile_lists_categories(self) -> None:
        with self.engine.begin() as conn:
            ledger.save_profile(
                conn, self.user_id, _profile(expense_categories=["Food", "Rent"]), TODAY
            )
            self.assertEqual(ledger.expense_categories(conn, self.user_id), ["Food", "Rent", "Other"])
            with self.assertRaises(ValidationError):
                self.record(conn, "5", category="Travel")
            expense_id = self.record(conn, "5", category="Other")
            self.assertEqual(ledger.get_expense(conn, self.user_id, expense_id)["category"], "Other")

    def test_expense_outside_configured_categories_stays_editable(self) -> None:
        with self.engine.begin() as conn:
            expense_id = self.record(conn, "40", category="Fitness")
            ledger.save_profile(
                conn, self.user_id, _profile(expense_categories=["Food", "Rent"]), TODAY
            )

            updated = ledger.update_expense(conn, self.user_id, expense_id, {"amount": Decimal("25")})
            resent = ledger.update_expense(
                conn, self.user_id, expense_id, {"name": "Gym", "category": "Fitness"}
            )
            with self.assertRaises(ValidationError):
                ledger.update_expense(conn, self.user_id, expense_id, {"category": "Travel"})
            view = ledger.aggregate_view(ledger.get_or_create_aggregate(conn, self.user_id, 3, 2025))

        self.assertEqual(updated["amount"], Decimal("25"))
        self.assertEqual(updated["category"], "Fitness")
        self.assertEqual(resent["name"], "Gym")
        self.assertEqual(view["spent"], Decimal("25"))

    def test_list_expenses_filters_period_and_sorts(self) -> None:
        with self.engine.begin() as conn:
            self.record(conn, "10", on=date(2025, 3, 2))
            self.record(conn, "30", on=date(2025, 3, 9), category="Transport")
            self.record(conn, "20", on=date(2025, 2, 20))

            this_month = ledger.list_expenses(conn, self.user_id, TODAY, sort="amount_desc")
            last_month = ledger.list_expenses(conn, self.user_id, TODAY, period="last_month")
            food = ledger.list_expenses(conn, self.user_id, TODAY, period="all", category="Food")

            with self.assertRaises(ValidationError):
                ledger.list_expenses(conn, self.user_id, TODAY, sort="name")

        self.assertEqual([row["amount"] for row in this_month], [Decimal("30"), Decimal("10")])
        self.assertEqual([row["amount"] for row in last_month], [Decimal("20")])
        self.assertEqual(len(food), 2)

    def test_category_summary_and_comparison(self) -> None:
        with self.engine.begin() as conn:
            self.record(conn, "10")
            self.record(conn, "5")
            self.record(conn, "20", category="Transport")
            self.record(conn, "12", on=date(2025, 1, 5), category="Rent")

            summary = ledger.summarize_by_category(conn, self.user_id, 3, 2025)
            labels, comparison = ledger.budget_comparison(conn, self.user_id, TODAY, months=3)

        self.assertEqual(
            [(item.category, item.total, item.percentage) for item in summary],
            [("Transport", Decimal("20"), 57), ("Food", Decimal("15"), 43)],
        )
        self.assertEqual(labels, ["2025-03", "2025-02", "2025-01"])
        rent = next(item for item in comparison if item.category == "Rent")
        self.assertEqual(rent.totals["2025-01"], Decimal("12"))
        self.assertEqual(rent.totals["2025-03"], Decimal("0"))


class GoalLedgerTests(LedgerTestCase):
    def test_goal_lifecycle(self) -> None:
        with self.engine.begin() as conn:
            goal_id, created_complete = ledger.create_goal(
                conn, self.user_id, name="Vacation", saved=Decimal("250"), target=Decimal("1000")
            )
            goal, reached = ledger.update_goal(conn, self.user_id, goal_id, saved=Decimal("1000"))
            again, reached_again = ledger.update_goal(
                conn, self.user_id, goal_id, saved=Decimal("1100")
            )
            with self.assertRaises(ValidationError):
                ledger.delete_goal(conn, self.user_id, goal_id, "")
            message = ledger.delete_goal(conn, self.user_id, goal_id, "completed")
            with self.assertRaises(NotFoundError):
                ledger.get_goal(conn, self.user_id, goal_id)

        self.assertFalse(created_complete)
        self.assertTrue(reached)
        self.assertTrue(goal["celebrated"])
        self.assertFalse(reached_again)
        self.assertEqual(again["percent_complete"], 110)
        self.assertEqual(message, "Congratulations on achieving your goal!")

    def test_goals_are_listed_per_user(self) -> None:
        with self.engine.begin() as conn:
            ledger.create_goal(conn, self.user_id, name="A", saved=Decimal("0"), target=Decimal("10"))
            ledger.create_goal(
                conn, self.other_user_id, name="B", saved=Decimal("0"), target=Decimal("10")
            )
            names = [row["name"] for row in ledger.list_goals(conn, self.user_id)]

        self.assertEqual(names, ["A"])


class TaskLedgerTests(LedgerTestCase):
    def test_saving_profile_generates_month_tasks(self) -> None:
        with self.engine.begin() as conn:
            ledger.save_profile(conn, self.user_id, _profile(has_home_loan=True), TODAY)
            tasks = ledger.list_tasks(conn, self.user_id, 3, 2025)

        self.assertEqual(
            [row["description"] for row in tasks],
            ["Pay monthly rent", "Pay home loan EMI", "Pay electricity bill"],
        )

    def test_preference_change_regenerates_and_keeps_custom_tasks(self) -> None:
        with self.engine.begin() as conn:
            ledger.save_profile(conn, self.user_id, _profile(), TODAY)
            ledger.add_task(conn, self.user_id, "Call the bank", date(2025, 3, 18), TODAY)
            ledger.update_task_preferences(
                conn,
                self.user_id,
                {"pays_rent": False, "uses_card": True, "credit_card_types": ["Visa"]},
                TODAY,
            )
            tasks = ledger.list_tasks(conn, self.user_id, 3, 2025)

        self.assertEqual(
            [(row["description"], row["category"]) for row in tasks],
            [
                ("Pay Visa credit card bill", "credit"),
                ("Call the bank", "custom"),
                ("Pay electricity bill", "utilities"),
            ],
        )

    def test_regenerate_requires_profile(self) -> None:
        with self.engine.begin() as conn:
            with self.assertRaises(NotFoundError):
                ledger.regenerate_tasks(conn, self.user_id, 3, 2025)

    def test_update_and_delete_task(self) -> None:
        with self.engine.begin() as conn:
            task_id = ledger.add_task(conn, self.user_id, "Review budget", date(2025, 3, 20), TODAY)
            row = ledger.update_task(conn, self.user_id, task_id, completed=True)
            with self.assertRaises(ValidationError):
                ledger.update_task(conn, self.user_id, task_id, description="  ")
            ledger.delete_task(conn, self.user_id, task_id)
            with self.assertRaises(NotFoundError):
                ledger.get_task(conn, self.user_id, task_id)

        self.assertTrue(row["completed"])


class TransactionImportTests(LedgerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.provider = StaticBankProvider(
            {
                "access-public-1": [
                    ProviderTransaction("tx-1", "Coffee", Decimal("4.50"), date(2025, 3, 10), "FOOD"),
                    ProviderTransaction("tx-2", "Payroll", Decimal("-2000"), date(2025, 3, 1)),
                    ProviderTransaction("tx-3", "Adjustment", Decimal("0"), date(2025, 3, 2)),
                    ProviderTransaction("tx-4", "Too old", Decimal("9"), date(2024, 12, 1)),
                ]
            }
        )

    def test_import_applies_sign_convention_and_is_idempotent(self) -> None:
        with self.engine.begin() as conn:
            item = ledger.link_bank_account(conn, self.user_id, self.provider, "public-1")
            token = ledger.resolve_access_token(conn, self.user_id)
            first = ledger.import_transactions(conn, self.user_id, self.provider, token, TODAY)
            second = ledger.import_transactions(conn, self.user_id, self.provider, token, TODAY)
            rows = ledger.list_transactions(conn, self.user_id)
            stored = conn.execute(select(transactions)).all()

        self.assertEqual(item.item_id, "item-public-1")
        self.assertEqual(token, "access-public-1")
        self.assertEqual((first, second), (2, 2))
        self.assertEqual(len(stored), 2)
        by_id = {row["external_id"]: row for row in rows}
        self.assertEqual(by_id["tx-1"]["type"], "expense")
        self.assertEqual(by_id["tx-1"]["amount"], Decimal("4.50"))
        self.assertEqual(by_id["tx-1"]["category"], "FOOD")
        self.assertEqual(by_id["tx-2"]["type"], "income")
        self.assertEqual(by_id["tx-2"]["amount"], Decimal("2000"))
        self.assertEqual(by_id["tx-2"]["category"], "Other")
        self.assertEqual(
            ledger.summarize_transactions(rows),
            {"income": Decimal("2000"), "expenses": Decimal("4.50"), "net": Decimal("1995.50")},
        )

    def test_imports_do_not_touch_budget_aggregates(self) -> None:
        with self.engine.begin() as conn:
            ledger.import_transactions(
                conn, self.user_id, self.provider, "access-public-1", TODAY
            )
            rows = conn.execute(select(budgets)).all()

        self.assertEqual(rows, [])

    def test_posted_transaction_replaces_its_pending_row(self) -> None:
        pending = ProviderTransaction(
            "tx-pending", "Hotel hold", Decimal("120"), date(2025, 3, 12), pending=True
        )
        posted = ProviderTransaction(
            "tx-posted",
            "Hotel",
            Decimal("118.40"),
            date(2025, 3, 13),
            pending_transaction_id="tx-pending",
        )
        before = StaticBankProvider({"access-public-1": [pending]})
        after = StaticBankProvider({"access-public-1": [pending, posted]})

        with self.engine.begin() as conn:
            ledger.import_transactions(conn, self.user_id, before, "access-public-1", TODAY)
            written = ledger.import_transactions(conn, self.user_id, after, "access-public-1", TODAY)
            ledger.import_transactions(conn, self.user_id, after, "access-public-1", TODAY)
            rows = ledger.list_transactions(conn, self.user_id)

        self.assertEqual(written, 1)
        self.assertEqual([row["external_id"] for row in rows], ["tx-posted"])
        self.assertEqual(rows[0]["amount"], Decimal("118.40"))
        self.assertFalse(rows[0]["pending"])

    def test_sync_without_link_raises_not_found(self) -> None:
        with self.engine.begin() as conn:
            with self.assertRaises(NotFoundError):
                ledger.resolve_access_token(conn, self.user_id)

    def test_access_token_resolves_only_from_own_items(self) -> None:
        with self.engine.begin() as conn:
            ledger.link_bank_account(conn, self.user_id, self.provider, "public-1")
            ledger.link_bank_account(conn, self.other_user_id, self.provider, "public-2")

            own = ledger.resolve_access_token(conn, self.user_id, "item-public-1")
            with self.assertRaises(NotFoundError):
                ledger.resolve_access_token(conn, self.user_id, "item-public-2")

        self.assertEqual(own, "access-public-1")

    def test_invalid_token_surfaces_provider_error(self) -> None:
        with self.engine.begin() as conn:
            with self.assertRaises(ExternalProviderError):
                ledger.import_transactions(conn, self.user_id, self.provider, "bogus", TODAY)

    def test_manual_transaction_validates_type(self) -> None:
        with self.engine.begin() as conn:
            with self.assertRaises(ValidationError):
                ledger.record_transaction(
                    conn,
                    self.user_id,
                    name="Gift",
                    amount=Decimal("20"),
                    type="transfer",
                    category=None,
                    date=TODAY,
                )
            transaction_id = ledger.record_transaction(
                conn,
                self.user_id,
                name="Gift",
                amount=Decimal("20"),
                type="Income",
                category=None,
                date=TODAY,
            )
            row = ledger.get_transaction(conn, self.user_id, transaction_id)

        self.assertEqual(row["type"], "income")
        self.assertEqual(row["source"], "manual")
        self.assertEqual(row["category"], "Other")


if __name__ == "__main__":
    unittest.main()
