"""
Authentication Gate Module

Re-authentication in front of a sensitive action. One gate instance guards
one action and fires it at most once:

    IDLE -> AWAITING_AUTH -> BIOMETRIC_PROMPT | PASSWORD_PROMPT
    BIOMETRIC_PROMPT -> AUTHORIZED (success) | IDLE (failure, error surfaced)
    BIOMETRIC_PROMPT -> PASSWORD_PROMPT (explicit use_password())
    PASSWORD_PROMPT -> AUTHORIZED | DENIED | PASSWORD_PROMPT (network error)
    any state before AUTHORIZED -> IDLE (cancel)

A failed biometric check never falls back to the password path on its own.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..errors import BankingError, ErrorKind
from ..logging_config import get_logger

logger = get_logger("mobile_bank.client.gate")


class GateState(Enum):
    IDLE = "idle"
    AWAITING_AUTH = "awaiting_auth"
    BIOMETRIC_PROMPT = "biometric_prompt"
    PASSWORD_PROMPT = "password_prompt"
    AUTHORIZED = "authorized"
    DENIED = "denied"


class GateTransitionError(RuntimeError):
    """Operation not allowed in the gate's current state"""


@dataclass
class BiometricResult:
    success: bool
    error: Optional[str] = None    # BIOMETRIC_UNAVAILABLE, AUTHENTICATION_FAILED, ...
    message: Optional[str] = None


class BiometricAuthenticator(ABC):
    """Device biometric hardware"""

    @abstractmethod
    def is_available(self) -> bool:
        """Hardware present and at least one biometric enrolled"""
        pass

    @abstractmethod
    def authenticate(self, prompt: str) -> BiometricResult:
        pass


class PreferenceStore(ABC):
    """Device-local storage for the biometric opt-in"""

    @abstractmethod
    def get_biometric_enabled(self) -> bool:
        pass

    @abstractmethod
    def set_biometric_enabled(self, enabled: bool) -> None:
        pass


class InMemoryPreferenceStore(PreferenceStore):

    def __init__(self, biometric_enabled: bool = False):
        self._enabled = biometric_enabled

    def get_biometric_enabled(self) -> bool:
        return self._enabled

    def set_biometric_enabled(self, enabled: bool) -> None:
        self._enabled = bool(enabled)


class PasswordVerifier(ABC):
    """Checks the password against the server"""

    @abstractmethod
    def verify(self, password: str) -> bool:
        """True/False for a definite answer; raises BankingError(NETWORK_ERROR) otherwise"""
        pass


class AuthenticationGate:
    """
    Single-shot re-authentication gate around one action
    """

    def __init__(
        self,
        action: Callable[[], Any],
        biometric: BiometricAuthenticator,
        preferences: PreferenceStore,
        password_verifier: PasswordVerifier,
        prompt: str = "Authenticate to confirm your transfer",
    ):
        self.action = action
        self.biometric = biometric
        self.preferences = preferences
        self.password_verifier = password_verifier
        self.prompt = prompt
        self.state = GateState.IDLE
        self.error: Optional[str] = None
        self.result: Any = None
        self._fired = False
        self._lock = threading.RLock()

    @property
    def fired(self) -> bool:
        return self._fired

    def _expect(self, *states: GateState) -> None:
        if self.state not in states:
            raise GateTransitionError(f"Not allowed in state {self.state.value}")

    def _should_use_biometric(self) -> bool:
        return self.biometric.is_available() and self.preferences.get_biometric_enabled()

    def request(self) -> GateState:
        """Start authentication; a gate that already fired stays AUTHORIZED"""
        with self._lock:
            if self._fired:
                return self.state
            self._expect(GateState.IDLE, GateState.DENIED)
            self.error = None
            self.state = GateState.AWAITING_AUTH

            if self._should_use_biometric():
                self.state = GateState.BIOMETRIC_PROMPT
            else:
                self.state = GateState.PASSWORD_PROMPT
            return self.state

    def complete_biometric(self) -> GateState:
        """Run the biometric prompt"""
        with self._lock:
            self._expect(GateState.BIOMETRIC_PROMPT)

            if not self.biometric.is_available():
                result = BiometricResult(
                    False, "BIOMETRIC_UNAVAILABLE",
                    "Biometric authentication is not available on this device"
                )
            else:
                result = self.biometric.authenticate(self.prompt)

            if not result.success:
                self.error = result.message or "Authentication failed"
                self.state = GateState.IDLE
                logger.info(f"Biometric authentication failed: {result.error}")
                return self.state

            return self._authorize()

    def use_password(self) -> GateState:
        """User chose the password path instead of biometrics"""
        with self._lock:
            self._expect(GateState.BIOMETRIC_PROMPT)
            self.state = GateState.PASSWORD_PROMPT
            return self.state

    def submit_password(self, password: str) -> GateState:
        with self._lock:
            self._expect(GateState.PASSWORD_PROMPT)
            if not password:
                self.error = "Please enter your password"
                return self.state

            try:
                valid = self.password_verifier.verify(password)
            except BankingError as e:
                if e.kind != ErrorKind.NETWORK_ERROR:
                    raise
                self.error = e.message
                return self.state

            if not valid:
                self.error = "Invalid password. Please try again."
                self.state = GateState.DENIED
                return self.state

            return self._authorize()

    def cancel(self) -> GateState:
        with self._lock:
            if self.state != GateState.AUTHORIZED:
                self.state = GateState.IDLE
                self.error = None
            return self.state

    def _authorize(self) -> GateState:
        self.state = GateState.AUTHORIZED
        self.error = None
        if not self._fired:
            self._fired = True
            self.result = self.action()
        return self.state
