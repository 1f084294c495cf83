"""
Transfer Flow Module

Puts a transfer behind an AuthenticationGate and turns the outcome into
something the app can show. An ambiguous outcome is never reported as
success or failure: the authoritative balance is re-read first.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from .api_client import BankingApiClient, OutcomeKind, TransferOutcome
from .gate import AuthenticationGate, BiometricAuthenticator, PreferenceStore, PasswordVerifier
from ..currency import Money
from ..errors import BankingError, ErrorKind
from ..logging_config import get_logger

logger = get_logger("mobile_bank.client.transfer")


USER_MESSAGES = {
    ErrorKind.INSUFFICIENT_FUNDS: "You don't have enough funds for this transfer.",
    ErrorKind.INVALID_AMOUNT: "Please enter a valid amount.",
    ErrorKind.ACCOUNT_NOT_FOUND: "We couldn't find that account. Please check the recipient details.",
    ErrorKind.VALIDATION_ERROR: "Please check the transfer details and try again.",
    ErrorKind.UNAUTHORIZED: "Your session has ended. Please sign in again.",
    ErrorKind.TOKEN_EXPIRED: "Your session has ended. Please sign in again.",
    ErrorKind.NETWORK_ERROR: "Network error. Please check your connection.",
}
DEFAULT_MESSAGE = "The transfer could not be completed. Please try again later."


@dataclass
class TransferReport:
    """What the transfer status screen shows"""
    kind: OutcomeKind
    message: str
    transaction: Optional[Dict[str, Any]] = None
    balance: Optional[Money] = None
    error_code: Optional[str] = None


class RemotePasswordVerifier(PasswordVerifier):
    """Password check against the API for the signed-in user"""

    def __init__(self, client: BankingApiClient):
        self.client = client

    def verify(self, password: str) -> bool:
        return self.client.verify_password(password)


class TransferFlow:
    """
    Builds one gate per transfer attempt
    """

    def __init__(self, client: BankingApiClient, biometric: BiometricAuthenticator,
                 preferences: PreferenceStore, password_verifier: Optional[PasswordVerifier] = None):
        self.client = client
        self.biometric = biometric
        self.preferences = preferences
        self.password_verifier = password_verifier or RemotePasswordVerifier(client)

    def start(self, from_account_id: str, to_account_ref: str, amount: Decimal,
              description: Optional[str] = None,
              recipient_name: Optional[str] = None) -> AuthenticationGate:
        """
        Create the gate for a transfer and start authentication.

        The transfer runs when the gate reaches AUTHORIZED; its TransferReport
        is then available as ``gate.result``.
        """
        def action() -> TransferReport:
            outcome = self.client.transfer(
                from_account_id, to_account_ref, amount,
                description=description, recipient_name=recipient_name,
            )
            return self.report(outcome, from_account_id)

        gate = AuthenticationGate(action, self.biometric, self.preferences, self.password_verifier)
        gate.request()
        return gate

    def report(self, outcome: TransferOutcome, from_account_id: str) -> TransferReport:
        if outcome.kind == OutcomeKind.SUCCESS:
            return TransferReport(
                OutcomeKind.SUCCESS, "Transfer completed successfully.",
                transaction=outcome.transaction
            )

        if outcome.kind == OutcomeKind.FAILED:
            return TransferReport(
                OutcomeKind.FAILED,
                USER_MESSAGES.get(outcome.error.kind, DEFAULT_MESSAGE),
                error_code=outcome.error.code
            )

        # Ambiguous: the server may or may not have committed
        try:
            balance = self.client.get_balance(from_account_id)
        except BankingError as e:
            logger.warning(f"Balance re-read after ambiguous transfer failed: {e.code}")
            return TransferReport(
                OutcomeKind.AMBIGUOUS,
                "We couldn't confirm your transfer. Check your transaction history before trying again.",
                error_code=ErrorKind.NETWORK_ERROR.value
            )

        return TransferReport(
            OutcomeKind.AMBIGUOUS,
            f"We couldn't confirm your transfer. Your current balance is {balance.to_string()}. "
            "Check your transaction history before trying again.",
            balance=balance,
            error_code=ErrorKind.NETWORK_ERROR.value
        )
