"""
Account Ledger Module

Owns the authoritative balance of every account. Reads are lock-free;
debits and credits run only inside an enclosing ``storage.atomic()`` after
the row lock has been taken, so the balance check and the write see the
same committed value.
"""

from decimal import Decimal
from datetime import datetime
from typing import List, Optional
import random

from .currency import Money, Currency
from .errors import BankingError, ErrorKind
from .logging_config import get_logger, log_action
from .models import Account, AccountType, monotonic_utc_now, new_id
from .storage import StorageInterface


logger = get_logger("mobile_bank.accounts")


class AccountLedger:
    """
    Balance reads and locked balance mutations over a storage backend
    """

    def __init__(self, storage: StorageInterface, allow_credit_overdraft: bool = True):
        self.storage = storage
        self.allow_credit_overdraft = allow_credit_overdraft

    def get_account(self, account_id: str, owner_user_id: Optional[str] = None) -> Account:
        """Get an account, filtered by owner when given"""
        row = self.storage.get_account(account_id, owner_user_id)
        if row is None:
            raise BankingError(ErrorKind.ACCOUNT_NOT_FOUND)
        return Account.from_row(row)

    def get_balance(self, account_id: str, owner_user_id: str) -> Money:
        """
        Current committed balance of an owned account.

        Raises:
            BankingError(ACCOUNT_NOT_FOUND): unknown id or not owned by the user
        """
        return self.get_account(account_id, owner_user_id).money

    def list_accounts(self, owner_user_id: str) -> List[Account]:
        """All accounts of a user, newest first"""
        return [Account.from_row(row) for row in self.storage.list_accounts(owner_user_id)]

    def lock(self, account_id: str, owner_user_id: Optional[str] = None) -> Optional[Account]:
        """Take the row lock; None when the account does not exist (or is not owned)"""
        row = self.storage.lock_account(account_id, owner_user_id)
        return Account.from_row(row) if row else None

    def _can_overdraw(self, account: Account) -> bool:
        return account.can_go_negative and self.allow_credit_overdraft

    def debit_locked(self, account: Account, amount: Decimal,
                     at: Optional[datetime] = None) -> Account:
        """
        Subtract amount from a locked account.

        Args:
            account: Account returned by lock() in the current transaction
            amount: Positive amount to debit
            at: Timestamp to stamp on the row

        Raises:
            BankingError(INSUFFICIENT_FUNDS): balance < amount on a non-credit account
            BankingError(TRANSACTION_FAILED): called outside a transaction
        """
        if not self.storage.in_transaction:
            raise BankingError(ErrorKind.TRANSACTION_FAILED, "Debit requires an open transaction")

        if account.balance < amount and not self._can_overdraw(account):
            raise BankingError(ErrorKind.INSUFFICIENT_FUNDS)

        account.balance = account.balance - amount
        account.updated_at = at or monotonic_utc_now()
        self.storage.set_balance(account.id, account.balance, account.updated_at)
        return account

    def credit_locked(self, account: Account, amount: Decimal,
                      at: Optional[datetime] = None) -> Account:
        """Add amount to a locked account"""
        if not self.storage.in_transaction:
            raise BankingError(ErrorKind.TRANSACTION_FAILED, "Credit requires an open transaction")

        account.balance = account.balance + amount
        account.updated_at = at or monotonic_utc_now()
        self.storage.set_balance(account.id, account.balance, account.updated_at)
        return account

    def open_account(
        self,
        user_id: str,
        account_type: AccountType,
        name: str,
        balance: Decimal = Decimal("0"),
        currency: Currency = Currency.USD,
        number: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> Account:
        """
        Provision an account with an opening balance.

        Account opening belongs to the bank's onboarding systems; this is used
        for seeding and tests.
        """
        now = monotonic_utc_now()
        account = Account(
            id=account_id or new_id(),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            type=account_type,
            name=name,
            number=number or self._generate_account_number(),
            balance=Money(balance, currency).amount,
            currency=currency,
        )
        self.storage.insert_account(account.to_dict())

        log_action(
            logger, "info", f"Opened {account_type.value} account",
            user_id=user_id, action="open_account", resource=account.id
        )
        return account

    @staticmethod
    def _generate_account_number() -> str:
        return "".join(str(random.randint(0, 9)) for _ in range(10))
