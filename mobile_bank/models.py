"""
Domain Records Module

Accounts, transactions and users as they are stored in the ledger. Amounts
are Decimal throughout; storage rows carry them as decimal strings (or
NUMERIC on PostgreSQL) and timestamps as UTC ISO-8601 strings.
"""

from decimal import Decimal
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum
import threading
import uuid

from .currency import Currency, Money, format_amount
from .storage import StorageRecord, to_iso, from_iso


class AccountType(Enum):
    """Account products exposed to the mobile app"""
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"


class TransactionType(Enum):
    TRANSFER = "transfer"
    PAYMENT = "payment"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


_clock_lock = threading.Lock()
_last_timestamp: Optional[datetime] = None


def monotonic_utc_now() -> datetime:
    """
    Current UTC time, strictly increasing across calls in this process.

    Two transfers committed back to back must not share a timestamp, or
    history ordering would fall back to the id tie-breaker.
    """
    global _last_timestamp
    with _clock_lock:
        now = datetime.now(timezone.utc)
        if _last_timestamp is not None and now <= _last_timestamp:
            now = _last_timestamp + timedelta(microseconds=1)
        _last_timestamp = now
        return now


def new_id() -> str:
    return str(uuid.uuid4())


def is_uuid(value: Any) -> bool:
    """Check whether a value is a canonical UUID string"""
    if not isinstance(value, str):
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


@dataclass
class Account(StorageRecord):
    """
    A user's account row. The balance is authoritative; it is only changed
    by the ledger while the row lock is held.
    """
    user_id: str
    type: AccountType
    name: str
    number: str
    balance: Decimal
    currency: Currency

    @property
    def money(self) -> Money:
        return Money(self.balance, self.currency)

    @property
    def masked_number(self) -> str:
        """Last four digits only, e.g. ****1234"""
        return f"****{self.number[-4:]}"

    @property
    def can_go_negative(self) -> bool:
        return self.type == AccountType.CREDIT

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['type'] = self.type.value
        result['currency'] = self.currency.code
        result['balance'] = str(self.balance)
        return result

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Account':
        return cls(
            id=row['id'],
            created_at=from_iso(row['created_at']),
            updated_at=from_iso(row['updated_at']),
            user_id=row['user_id'],
            type=AccountType(row['type']),
            name=row['name'],
            number=row['number'],
            balance=Decimal(str(row['balance'])),
            currency=Currency.from_code(row['currency'].strip()),
        )

    def to_api(self) -> Dict[str, Any]:
        """camelCase representation for the REST API"""
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type.value,
            "name": self.name,
            "number": self.masked_number,
            "balance": format_amount(self.balance, self.currency),
            "currency": self.currency.code,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }


@dataclass
class Transaction:
    """
    Immutable record of a money movement. For a transfer the amount is
    negative from the source account's perspective.
    """
    id: str
    type: TransactionType
    amount: Decimal
    description: str
    date: datetime
    status: TransactionStatus
    user_id: str
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    recipient_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": str(self.amount),
            "description": self.description,
            "date": to_iso(self.date),
            "status": self.status.value,
            "from_account_id": self.from_account_id,
            "to_account_id": self.to_account_id,
            "recipient_name": self.recipient_name,
            "user_id": self.user_id,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=row['id'],
            type=TransactionType(row['type']),
            amount=Decimal(str(row['amount'])),
            description=row.get('description') or '',
            date=from_iso(row['date']),
            status=TransactionStatus(row['status']),
            user_id=row['user_id'],
            from_account_id=row.get('from_account_id'),
            to_account_id=row.get('to_account_id'),
            recipient_name=row.get('recipient_name'),
        )

    def to_api(self, currency: Currency = Currency.USD) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": format_amount(self.amount, currency),
            "description": self.description,
            "date": to_iso(self.date),
            "status": self.status.value,
            "fromAccountId": self.from_account_id,
            "toAccountId": self.to_account_id,
            "recipientName": self.recipient_name,
        }


@dataclass
class User(StorageRecord):
    """Registered app user; password_hash never leaves the server"""
    email: str
    name: str
    password_hash: str
    phone_number: Optional[str] = None
    biometric_enabled: bool = False

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'User':
        return cls(
            id=row['id'],
            created_at=from_iso(row['created_at']),
            updated_at=from_iso(row['updated_at']),
            email=row['email'],
            name=row['name'],
            password_hash=row['password_hash'],
            phone_number=row.get('phone_number'),
            biometric_enabled=bool(row.get('biometric_enabled')),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "phoneNumber": self.phone_number,
            "biometricEnabled": self.biometric_enabled,
            "createdAt": to_iso(self.created_at),
        }
