"""
Tests for the demo data seeder
"""

from decimal import Decimal

from mobile_bank.seed import seed_demo_data, DEMO_EMAIL, DEMO_PASSWORD


class TestSeedDemoData:

    def test_seeds_accounts_history_and_transfer(self, banking_system):
        ids = seed_demo_data(banking_system)

        user = banking_system.users.authenticate(DEMO_EMAIL, DEMO_PASSWORD)
        assert user.id == ids["user_id"]

        ledger = banking_system.ledger
        assert ledger.get_balance(ids["checking"], user.id).amount == Decimal("4957.50")
        payee_account = ledger.get_account(ids["payee_checking"])
        assert payee_account.balance == Decimal("292.50")

        page = banking_system.history.query(user.id, limit=100)
        assert page.total == 31
        assert page.items[0].description == "Dinner split"

    def test_second_run_is_a_no_op(self, banking_system):
        first = seed_demo_data(banking_system)
        second = seed_demo_data(banking_system)

        assert second["user_id"] == first["user_id"]
        assert second["checking"] == first["checking"]
        assert len(banking_system.ledger.list_accounts(first["user_id"])) == 3
