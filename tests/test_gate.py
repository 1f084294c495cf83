"""
Tests for the re-authentication gate and the guarded transfer flow
"""

import pytest
from decimal import Decimal

from mobile_bank.client import (
    AuthenticationGate, GateState, GateTransitionError, BiometricAuthenticator, BiometricResult,
    InMemoryPreferenceStore, PasswordVerifier, TransferFlow, OutcomeKind, TransferOutcome
)
from mobile_bank.currency import Currency, Money
from mobile_bank.errors import BankingError, ErrorKind


class FakeBiometric(BiometricAuthenticator):

    def __init__(self, available=True, results=None):
        self.available = available
        self.results = list(results or [BiometricResult(True)])
        self.prompts = []

    def is_available(self):
        return self.available

    def authenticate(self, prompt):
        self.prompts.append(prompt)
        return self.results.pop(0)


class FakePasswordVerifier(PasswordVerifier):

    def __init__(self, password="Secret@123", network_down=False):
        self.password = password
        self.network_down = network_down
        self.calls = 0

    def verify(self, password):
        self.calls += 1
        if self.network_down:
            raise BankingError(ErrorKind.NETWORK_ERROR)
        return password == self.password


class CountingAction:

    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return f"result-{self.calls}"


def make_gate(biometric=None, enabled=True, verifier=None):
    action = CountingAction()
    gate = AuthenticationGate(
        action,
        biometric or FakeBiometric(),
        InMemoryPreferenceStore(enabled),
        verifier or FakePasswordVerifier(),
    )
    return gate, action


class TestAuthenticationGate:
    """Gate state machine"""

    def test_biometric_success_fires_action_once(self):
        gate, action = make_gate()
        assert gate.request() == GateState.BIOMETRIC_PROMPT
        assert gate.complete_biometric() == GateState.AUTHORIZED
        assert action.calls == 1
        assert gate.result == "result-1"

        # A second confirmation tap does nothing
        assert gate.request() == GateState.AUTHORIZED
        assert action.calls == 1

    def test_biometric_disabled_goes_to_password(self):
        gate, action = make_gate(enabled=False)
        assert gate.request() == GateState.PASSWORD_PROMPT
        assert gate.submit_password("Secret@123") == GateState.AUTHORIZED
        assert action.calls == 1

    def test_no_hardware_goes_to_password(self):
        gate, _ = make_gate(biometric=FakeBiometric(available=False))
        assert gate.request() == GateState.PASSWORD_PROMPT

    def test_biometric_failure_returns_to_idle_without_fallback(self):
        biometric = FakeBiometric(results=[BiometricResult(False, "AUTHENTICATION_FAILED", "Not recognized")])
        gate, action = make_gate(biometric=biometric)
        gate.request()

        assert gate.complete_biometric() == GateState.IDLE
        assert gate.error == "Not recognized"
        assert action.calls == 0

    def test_hardware_lost_during_prompt(self):
        biometric = FakeBiometric()
        gate, action = make_gate(biometric=biometric)
        gate.request()
        biometric.available = False

        assert gate.complete_biometric() == GateState.IDLE
        assert "not available" in gate.error
        assert biometric.prompts == []
        assert action.calls == 0

    def test_user_can_choose_password_instead(self):
        gate, action = make_gate()
        gate.request()
        assert gate.use_password() == GateState.PASSWORD_PROMPT
        assert gate.submit_password("Secret@123") == GateState.AUTHORIZED
        assert action.calls == 1

    def test_wrong_password_is_denied_then_retry(self):
        gate, action = make_gate(enabled=False)
        gate.request()
        assert gate.submit_password("wrong") == GateState.DENIED
        assert gate.error == "Invalid password. Please try again."
        assert action.calls == 0

        assert gate.request() == GateState.PASSWORD_PROMPT
        assert gate.error is None
        assert gate.submit_password("Secret@123") == GateState.AUTHORIZED
        assert action.calls == 1

    def test_empty_password_is_not_sent(self):
        verifier = FakePasswordVerifier()
        gate, _ = make_gate(enabled=False, verifier=verifier)
        gate.request()
        assert gate.submit_password("") == GateState.PASSWORD_PROMPT
        assert gate.error
        assert verifier.calls == 0

    def test_network_error_keeps_password_prompt(self):
        gate, action = make_gate(enabled=False, verifier=FakePasswordVerifier(network_down=True))
        gate.request()
        assert gate.submit_password("Secret@123") == GateState.PASSWORD_PROMPT
        assert gate.error == "Network error. Please check your connection."
        assert action.calls == 0

    def test_cancel(self):
        gate, action = make_gate()
        gate.request()
        assert gate.cancel() == GateState.IDLE
        assert action.calls == 0
        assert gate.request() == GateState.BIOMETRIC_PROMPT

    def test_out_of_order_calls(self):
        gate, _ = make_gate()
        with pytest.raises(GateTransitionError):
            gate.complete_biometric()
        with pytest.raises(GateTransitionError):
            gate.submit_password("Secret@123")
        gate.request()
        with pytest.raises(GateTransitionError):
            gate.request()


class FakeClient:
    """Stands in for BankingApiClient"""

    def __init__(self, outcome, balance=None, balance_error=None):
        self.outcome = outcome
        self.balance = balance
        self.balance_error = balance_error
        self.transfers = []
        self.balance_reads = 0

    def transfer(self, from_account_id, to_account_ref, amount, description=None, recipient_name=None):
        self.transfers.append((from_account_id, to_account_ref, amount))
        return self.outcome

    def get_balance(self, account_id):
        self.balance_reads += 1
        if self.balance_error:
            raise self.balance_error
        return self.balance

    def verify_password(self, password):
        return password == "Secret@123"


class TestTransferFlow:
    """Guarded transfer and outcome reporting"""

    def flow(self, client, enabled=True):
        return TransferFlow(client, FakeBiometric(), InMemoryPreferenceStore(enabled))

    def test_success(self):
        client = FakeClient(TransferOutcome(OutcomeKind.SUCCESS, transaction={"id": "txn-1"}))
        gate = self.flow(client).start("acc-1", "+15550100002", Decimal("30.00"))
        assert client.transfers == []

        gate.complete_biometric()
        report = gate.result
        assert report.kind == OutcomeKind.SUCCESS
        assert report.message == "Transfer completed successfully."
        assert report.transaction == {"id": "txn-1"}
        assert len(client.transfers) == 1

    def test_password_path_uses_client_verification(self):
        client = FakeClient(TransferOutcome(OutcomeKind.SUCCESS, transaction={"id": "txn-1"}))
        gate = self.flow(client, enabled=False).start("acc-1", "EXT-1", Decimal("5"))
        assert gate.state == GateState.PASSWORD_PROMPT
        assert gate.submit_password("wrong") == GateState.DENIED
        assert client.transfers == []

    def test_failure_message(self):
        error = BankingError(ErrorKind.INSUFFICIENT_FUNDS)
        client = FakeClient(TransferOutcome(OutcomeKind.FAILED, error=error))
        gate = self.flow(client).start("acc-1", "EXT-1", Decimal("500"))
        gate.complete_biometric()

        assert gate.result.kind == OutcomeKind.FAILED
        assert gate.result.error_code == "INSUFFICIENT_FUNDS"
        assert "enough funds" in gate.result.message
        assert client.balance_reads == 0

    def test_ambiguous_rereads_balance(self):
        client = FakeClient(
            TransferOutcome(OutcomeKind.AMBIGUOUS, error=BankingError(ErrorKind.NETWORK_ERROR)),
            balance=Money(Decimal("70.00"), Currency.USD),
        )
        gate = self.flow(client).start("acc-1", "EXT-1", Decimal("30.00"))
        gate.complete_biometric()

        report = gate.result
        assert report.kind == OutcomeKind.AMBIGUOUS
        assert report.balance == Money(Decimal("70.00"), Currency.USD)
        assert "USD 70.00" in report.message
        assert client.balance_reads == 1
        assert len(client.transfers) == 1

    def test_ambiguous_when_balance_also_unreachable(self):
        client = FakeClient(
            TransferOutcome(OutcomeKind.AMBIGUOUS, error=BankingError(ErrorKind.NETWORK_ERROR)),
            balance_error=BankingError(ErrorKind.NETWORK_ERROR),
        )
        gate = self.flow(client).start("acc-1", "EXT-1", Decimal("30.00"))
        gate.complete_biometric()

        assert gate.result.kind == OutcomeKind.AMBIGUOUS
        assert gate.result.balance is None
        assert "transaction history" in gate.result.message
