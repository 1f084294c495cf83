#!/usr/bin/env python3
"""Seed script for the Mobile Bank demo

Creates:
- a demo user with checking, savings and credit accounts
- a second user whose checking account receives on-ledger transfers
- a few months of historical deposits and payments
- one real transfer through the transfer engine

Run with: python -m mobile_bank.seed
"""

import random
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Optional

from .accounts import AccountLedger
from .api.dependencies import BankingSystem
from .config import get_config
from .errors import BankingError
from .logging_config import setup_logging
from .models import (
    AccountType, Transaction, TransactionType, TransactionStatus, monotonic_utc_now, new_id
)


DEMO_EMAIL = "demo@mobilebank.example"
DEMO_PASSWORD = "Demo@12345"
PAYEE_EMAIL = "jane@mobilebank.example"

MERCHANTS = [
    "Grocery Mart", "City Electric", "Coffee House", "Metro Transit", "Streaming Plus",
    "Pharmacy Central", "Fuel Stop", "Book Nook",
]


def _ensure_user(system: BankingSystem, email: str, name: str, phone: str):
    existing = system.storage.get_user_by_email(email)
    if existing:
        return system.users.get_user(existing['id']), False
    return system.users.register(email, name, phone, DEMO_PASSWORD), True


def create_history(system: BankingSystem, user_id: str, account_id: str, count: int = 30,
                   rng: Optional[random.Random] = None) -> int:
    """Insert historical deposits and payments (opening balances already reflect them)"""
    rng = rng or random.Random(42)
    now = monotonic_utc_now()
    for i in range(count):
        is_deposit = i % 5 == 0
        amount = Decimal(rng.randint(500, 250000)) / 100 if is_deposit else Decimal(rng.randint(199, 15000)) / 100
        merchant = rng.choice(MERCHANTS)
        transaction = Transaction(
            id=new_id(),
            type=TransactionType.DEPOSIT if is_deposit else TransactionType.PAYMENT,
            amount=amount if is_deposit else -amount,
            description="Salary deposit" if is_deposit else f"Card payment - {merchant}",
            date=now - timedelta(days=count - i, hours=rng.randint(0, 12)),
            status=TransactionStatus.PENDING if i == count - 1 else TransactionStatus.COMPLETED,
            user_id=user_id,
            from_account_id=None if is_deposit else account_id,
            to_account_id=account_id if is_deposit else None,
            recipient_name=None if is_deposit else merchant,
        )
        system.storage.insert_transaction(transaction.to_dict())
    return count


def seed_demo_data(system: BankingSystem) -> Dict[str, str]:
    """Seed demo users and accounts; safe to run twice"""
    ledger: AccountLedger = system.ledger

    demo, created = _ensure_user(system, DEMO_EMAIL, "Demo User", "+1 555 010 0001")
    payee, _ = _ensure_user(system, PAYEE_EMAIL, "Jane Payee", "+1 555 010 0002")

    if not created:
        print(f"ℹ️  {DEMO_EMAIL} already seeded")
        accounts = {a.type.value: a.id for a in ledger.list_accounts(demo.id)}
        return {"user_id": demo.id, **accounts}

    checking = ledger.open_account(demo.id, AccountType.CHECKING, "Everyday Checking", Decimal("5000.00"))
    savings = ledger.open_account(demo.id, AccountType.SAVINGS, "Rainy Day Savings", Decimal("12000.00"))
    credit = ledger.open_account(demo.id, AccountType.CREDIT, "Rewards Credit Card", Decimal("0.00"))
    payee_checking = ledger.open_account(payee.id, AccountType.CHECKING, "Jane's Checking", Decimal("250.00"))
    print(f"✅ Created 4 accounts (demo checking {checking.masked_number})")

    created_count = create_history(system, demo.id, checking.id)
    print(f"✅ Created {created_count} historical transactions")

    try:
        system.transfer_engine.transfer(
            demo.id, checking.id, payee_checking.id, Decimal("42.50"),
            description="Dinner split", recipient_name="Jane Payee"
        )
        print("✅ Transferred 42.50 to Jane Payee")
    except BankingError as e:
        print(f"❌ Demo transfer failed: {e.code} {e.message}")

    return {
        "user_id": demo.id,
        "checking": checking.id,
        "savings": savings.id,
        "credit": credit.id,
        "payee_checking": payee_checking.id,
    }


def main():
    """Main seeding function"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("🏦 Mobile Bank - Seed Data Generator")
    print("=" * 50)

    system = BankingSystem(config)
    try:
        ids = seed_demo_data(system)
        print()
        print(f"👤 Sign in as {DEMO_EMAIL} / {DEMO_PASSWORD}")
        for name, value in ids.items():
            print(f"   {name}: {value}")
    finally:
        system.close()


if __name__ == "__main__":
    main()
