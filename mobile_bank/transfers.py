"""
Transfer Engine Module

Moves money out of a user's account in one atomic unit: lock, check,
debit, optionally credit an on-ledger destination, record the transaction,
commit. Any failure after the first lock rolls the whole unit back.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .currency import Currency, parse_amount
from .errors import BankingError, ErrorKind
from .logging_config import get_logger, log_action
from .accounts import AccountLedger
from .models import (
    Transaction, TransactionType, TransactionStatus, monotonic_utc_now, new_id, is_uuid
)
from .storage import StorageInterface


logger = get_logger("mobile_bank.transfers")

MAX_REFERENCE_LENGTH = 64
MAX_DESCRIPTION_LENGTH = 255
MAX_RECIPIENT_NAME_LENGTH = 100


class DestinationPolicy(Enum):
    """How a destination reference is resolved against the ledger"""
    EXTERNAL = "external"                # never looked up; always off-ledger
    CREDIT_IF_FOUND = "credit_if_found"  # credit when the UUID exists, else off-ledger
    STRICT = "strict"                    # a UUID that does not exist is rejected


class TransferEngine:
    """
    Executes transfers against the account ledger
    """

    def __init__(
        self,
        storage: StorageInterface,
        ledger: AccountLedger,
        destination_policy: DestinationPolicy = DestinationPolicy.CREDIT_IF_FOUND,
        max_transaction_amount: Optional[Decimal] = None,
        currency: Currency = Currency.USD,
    ):
        self.storage = storage
        self.ledger = ledger
        self.destination_policy = destination_policy
        self.max_transaction_amount = max_transaction_amount
        self.currency = currency

    def transfer(
        self,
        requester_user_id: str,
        from_account_id: str,
        to_account_ref: str,
        amount: Any,
        description: Optional[str] = None,
        recipient_name: Optional[str] = None,
    ) -> Transaction:
        """
        Transfer amount from an owned account to an account reference.

        Args:
            requester_user_id: Authenticated user; must own the source account
            from_account_id: Source account UUID
            to_account_ref: Destination account UUID, or an off-ledger reference
                such as a phone number or external account number
            amount: Positive amount at currency precision
            description: Optional free text
            recipient_name: Optional display name of the recipient

        Returns:
            The completed Transaction (amount negative from the source's view)

        Raises:
            BankingError: VALIDATION_ERROR, INVALID_AMOUNT, ACCOUNT_NOT_FOUND,
                INSUFFICIENT_FUNDS or TRANSACTION_FAILED. Nothing is persisted.
        """
        try:
            value = parse_amount(amount, self.currency, self.max_transaction_amount)
            from_account_id, to_account_ref = self._validate_refs(from_account_id, to_account_ref)
            description = self._validate_text(description, MAX_DESCRIPTION_LENGTH, "Description")
            recipient_name = self._validate_text(recipient_name, MAX_RECIPIENT_NAME_LENGTH, "Recipient name")

            transaction = self._execute(
                requester_user_id, from_account_id, to_account_ref, value, description, recipient_name
            )
        except BankingError as e:
            log_action(
                logger, "warning", f"Transfer rejected: {e.code}",
                user_id=requester_user_id, action="transfer", resource=from_account_id,
                extra={"code": e.code, "reason": e.message}
            )
            raise
        except Exception as e:
            logger.exception("Transfer failed unexpectedly")
            raise BankingError(ErrorKind.TRANSACTION_FAILED) from e

        log_action(
            logger, "info", "Transfer completed",
            user_id=requester_user_id, action="transfer", resource=transaction.id,
            extra={
                "from_account_id": transaction.from_account_id,
                "to_account_id": transaction.to_account_id,
                "amount": str(value),
            }
        )
        return transaction

    def _execute(self, user_id: str, from_account_id: str, to_account_ref: str,
                 amount: Decimal, description: Optional[str],
                 recipient_name: Optional[str]) -> Transaction:
        look_up_destination = (
            self.destination_policy != DestinationPolicy.EXTERNAL and is_uuid(to_account_ref)
        )

        with self.storage.atomic():
            # Lock rows in ascending id order so opposite transfers cannot deadlock
            locked = {}
            lock_ids = [from_account_id] + ([to_account_ref] if look_up_destination else [])
            for account_id in sorted(lock_ids):
                if account_id == from_account_id:
                    locked[account_id] = self.ledger.lock(account_id, user_id)
                else:
                    locked[account_id] = self.ledger.lock(account_id)

            source = locked[from_account_id]
            if source is None:
                raise BankingError(ErrorKind.ACCOUNT_NOT_FOUND)

            if source.currency != self.currency:
                parse_amount(amount, source.currency)

            destination = locked.get(to_account_ref) if look_up_destination else None
            if look_up_destination and destination is None and \
                    self.destination_policy == DestinationPolicy.STRICT:
                raise BankingError(ErrorKind.ACCOUNT_NOT_FOUND, "Recipient account not found")

            if destination is not None and destination.currency != source.currency:
                raise BankingError(
                    ErrorKind.VALIDATION_ERROR,
                    "Cross-currency transfers are not supported"
                )

            now = monotonic_utc_now()
            self.ledger.debit_locked(source, amount, now)
            if destination is not None:
                self.ledger.credit_locked(destination, amount, now)

            transaction = Transaction(
                id=new_id(),
                type=TransactionType.TRANSFER,
                amount=-amount,
                description=description or f"Transfer to {recipient_name or to_account_ref}",
                date=now,
                status=TransactionStatus.COMPLETED,
                user_id=user_id,
                from_account_id=from_account_id,
                to_account_id=to_account_ref,
                recipient_name=recipient_name,
            )
            self.storage.insert_transaction(transaction.to_dict())

        return transaction

    @staticmethod
    def _validate_refs(from_account_id: Any, to_account_ref: Any):
        if not is_uuid(from_account_id):
            raise BankingError(ErrorKind.VALIDATION_ERROR, "Invalid source account id")
        from_account_id = from_account_id.lower()

        if not isinstance(to_account_ref, str) or not to_account_ref.strip():
            raise BankingError(ErrorKind.VALIDATION_ERROR, "Recipient account is required")
        to_account_ref = to_account_ref.strip()
        if len(to_account_ref) > MAX_REFERENCE_LENGTH:
            raise BankingError(ErrorKind.VALIDATION_ERROR, "Recipient account reference is too long")
        if is_uuid(to_account_ref):
            to_account_ref = to_account_ref.lower()

        if from_account_id == to_account_ref:
            raise BankingError(ErrorKind.VALIDATION_ERROR, "Cannot transfer to the same account")

        return from_account_id, to_account_ref

    @staticmethod
    def _validate_text(value: Any, max_length: int, label: str) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise BankingError(ErrorKind.VALIDATION_ERROR, f"{label} must be a string")
        value = value.strip()
        if len(value) > max_length:
            raise BankingError(ErrorKind.VALIDATION_ERROR, f"{label} must be at most {max_length} characters")
        return value or None
