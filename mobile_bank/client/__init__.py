"""
Client-side transfer flow: REST client, authentication gate, and the
transfer flow that guards a transfer behind re-authentication.
"""

from .api_client import BankingApiClient, OutcomeKind, TransferOutcome
from .gate import (
    AuthenticationGate, GateState, GateTransitionError, BiometricAuthenticator,
    BiometricResult, PreferenceStore, InMemoryPreferenceStore, PasswordVerifier
)
from .transfer_flow import TransferFlow, TransferReport, RemotePasswordVerifier

__all__ = [
    "BankingApiClient", "OutcomeKind", "TransferOutcome",
    "AuthenticationGate", "GateState", "GateTransitionError", "BiometricAuthenticator",
    "BiometricResult", "PreferenceStore", "InMemoryPreferenceStore", "PasswordVerifier",
    "TransferFlow", "TransferReport", "RemotePasswordVerifier",
]
