"""
Mobile Bank REST Client Module

httpx client for the transfer core API. Typed error bodies come back as
BankingError; transport failures and timeouts become NETWORK_ERROR, which
for a transfer means the outcome is unknown.
"""

import httpx
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from ..currency import Currency, Money
from ..errors import BankingError, ErrorKind
from ..logging_config import get_logger

logger = get_logger("mobile_bank.client")


class OutcomeKind(Enum):
    SUCCESS = "success"      # committed; transaction is set
    FAILED = "failed"        # definitively not committed; error is set
    AMBIGUOUS = "ambiguous"  # no response; re-read the balance before retrying


@dataclass
class TransferOutcome:
    kind: OutcomeKind
    transaction: Optional[Dict[str, Any]] = None
    error: Optional[BankingError] = None


class BankingApiClient:
    """REST client for the mobile bank API"""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.user: Optional[Dict[str, Any]] = None
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def _headers(self, authenticated: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if authenticated and self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    @staticmethod
    def _error_from_response(response: httpx.Response) -> BankingError:
        try:
            body = response.json()
            code = body["error"]["code"]
            message = body["error"].get("message")
        except (ValueError, KeyError, TypeError):
            # No typed body (proxy error page, truncated response)
            return BankingError(
                ErrorKind.NETWORK_ERROR, f"Unexpected response from server ({response.status_code})",
                status_code=response.status_code
            )
        try:
            kind = ErrorKind(code)
        except ValueError:
            kind = ErrorKind.TRANSACTION_FAILED
        return BankingError(kind, message, status_code=response.status_code)

    def _send(self, method: str, path: str, authenticated: bool, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, path, headers=self._headers(authenticated), **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e.__class__.__name__}")
            raise BankingError(ErrorKind.NETWORK_ERROR) from e

    def _request(self, method: str, path: str, authenticated: bool = True, **kwargs) -> Dict[str, Any]:
        response = self._send(method, path, authenticated, **kwargs)

        # One silent refresh when the access token has expired
        if response.status_code == 401 and authenticated and self.refresh_token:
            error = self._error_from_response(response)
            if error.kind == ErrorKind.TOKEN_EXPIRED:
                self.refresh()
                response = self._send(method, path, authenticated, **kwargs)

        if response.is_error:
            raise self._error_from_response(response)

        try:
            return response.json()
        except ValueError as e:
            raise BankingError(ErrorKind.NETWORK_ERROR, "Unexpected response from server") from e

    def _store_session(self, data: Dict[str, Any]) -> Dict[str, Any]:
        tokens = data.get("tokens", {})
        self.access_token = tokens.get("accessToken")
        self.refresh_token = tokens.get("refreshToken")
        self.user = data.get("user")
        return self.user

    def login(self, email: str, password: str) -> Dict[str, Any]:
        """Sign in and keep the session tokens"""
        data = self._request("POST", "/auth/login", authenticated=False,
                             json={"email": email, "password": password})
        return self._store_session(data)

    def verify_password(self, password: str) -> bool:
        """
        Re-check the signed-in user's password without replacing the session.

        Returns False for wrong credentials; network errors propagate.
        """
        if not self.user:
            raise BankingError(ErrorKind.UNAUTHORIZED, "Not signed in")
        try:
            self._request("POST", "/auth/login", authenticated=False,
                          json={"email": self.user["email"], "password": password})
        except BankingError as e:
            if e.kind in (ErrorKind.INVALID_CREDENTIALS, ErrorKind.VALIDATION_ERROR):
                return False
            raise
        return True

    def refresh(self) -> None:
        if not self.refresh_token:
            raise BankingError(ErrorKind.UNAUTHORIZED, "No refresh token")
        data = self._request("POST", "/auth/refresh", authenticated=False,
                             json={"refreshToken": self.refresh_token})
        self.access_token = data["accessToken"]
        self.refresh_token = data["refreshToken"]

    def me(self) -> Dict[str, Any]:
        self.user = self._request("GET", "/auth/me")["user"]
        return self.user

    def set_biometric(self, enabled: bool) -> Dict[str, Any]:
        self.user = self._request("PATCH", "/auth/biometric", json={"biometricEnabled": enabled})["user"]
        return self.user

    def logout(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.user = None

    def list_accounts(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/accounts")["accounts"]

    def get_balance(self, account_id: str) -> Money:
        data = self._request("GET", f"/accounts/{account_id}/balance")
        return Money(Decimal(data["balance"]), Currency.from_code(data["currency"]))

    def transfer(
        self,
        from_account_id: str,
        to_account_ref: str,
        amount: Decimal,
        description: Optional[str] = None,
        recipient_name: Optional[str] = None,
    ) -> TransferOutcome:
        """Submit a transfer; never raises for server or network failures"""
        body = {
            "fromAccountId": from_account_id,
            "toAccountId": to_account_ref,
            "amount": str(amount),
        }
        if description:
            body["description"] = description
        if recipient_name:
            body["recipientName"] = recipient_name

        try:
            data = self._request("POST", "/transfer", json=body)
        except BankingError as e:
            if e.kind == ErrorKind.NETWORK_ERROR:
                logger.warning("Transfer outcome unknown; balance must be re-read")
                return TransferOutcome(OutcomeKind.AMBIGUOUS, error=e)
            return TransferOutcome(OutcomeKind.FAILED, error=e)

        return TransferOutcome(OutcomeKind.SUCCESS, transaction=data["transaction"])

    def history(self, page: int = 1, limit: int = 20, **filters: Any) -> Dict[str, Any]:
        """Fetch a history page; filters use the API's names (type, status, search, startDate, endDate)"""
        params = {"page": page, "limit": limit}
        params.update({k: v for k, v in filters.items() if v is not None})
        return self._request("GET", "/transactions/history", params=params)

    def close(self):
        """Close the HTTP client"""
        self._client.close()
