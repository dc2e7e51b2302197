import unittest
from datetime import date
from decimal import Decimal

from digitwin.task_planner import (
    PlannedTask,
    TaskPreferences,
    plan_monthly_tasks,
)


class TaskPlannerTests(unittest.TestCase):
    def test_default_preferences_plan_rent_and_default_utilities(self) -> None:
        tasks = plan_monthly_tasks(TaskPreferences(), month=4, year=2025)

        self.assertEqual(
            tasks,
            [
                PlannedTask("Pay monthly rent", date(2025, 4, 1), "housing"),
                PlannedTask("Pay electricity bill", date(2025, 4, 20), "utilities"),
                PlannedTask("Pay internet bill", date(2025, 4, 22), "utilities"),
            ],
        )

    def test_full_preferences_plan_every_reminder(self) -> None:
        preferences = TaskPreferences(
            has_home_loan=True,
            uses_card=True,
            credit_card_types=("Visa", "Amex"),
            pays_rent=False,
            utility_bills={"electricity": False, "internet": False, "water": True, "gas": True},
            savings_goal=Decimal("5000"),
            has_savings_goal_reminder=True,
        )

        tasks = plan_monthly_tasks(preferences, month=2, year=2025)

        self.assertEqual(
            [(task.description, task.due_date.day, task.category) for task in tasks],
            [
                ("Pay home loan EMI", 5, "loan"),
                ("Pay Visa credit card bill", 15, "credit"),
                ("Pay Amex credit card bill", 15, "credit"),
                ("Pay water bill", 25, "utilities"),
                ("Pay gas bill", 28, "utilities"),
                ("Transfer 5,000 to savings account", 25, "savings"),
            ],
        )

    def test_cards_ignored_when_card_usage_off(self) -> None:
        preferences = TaskPreferences(uses_card=False, credit_card_types=("Visa",), pays_rent=False, utility_bills={})

        self.assertEqual(plan_monthly_tasks(preferences, month=1, year=2025), [])

    def test_savings_reminder_needs_positive_goal(self) -> None:
        preferences = TaskPreferences(
            pays_rent=False,
            utility_bills={},
            has_savings_goal_reminder=True,
            savings_goal=Decimal("0"),
        )

        self.assertEqual(plan_monthly_tasks(preferences, month=1, year=2025), [])


if __name__ == "__main__":
    unittest.main()
