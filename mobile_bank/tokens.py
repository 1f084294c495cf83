"""
Token Service Module

Issues and verifies HS256-signed JWTs (PyJWT). Access and refresh tokens
are signed with different secrets and carry a ``typ`` claim. Verification
checks the signature before any claim, then expiry.
"""

import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from .errors import ErrorKind, TokenError
from .logging_config import get_logger


logger = get_logger("mobile_bank.tokens")

ACCESS = "access"
REFRESH = "refresh"

DEFAULT_DURATION = timedelta(minutes=15)
_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd])\s*$")
_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


def parse_duration(value: str) -> timedelta:
    """Parse '30s', '15m', '2h' or '7d'; anything else means 15 minutes"""
    match = _DURATION_PATTERN.match(value or "")
    if not match:
        logger.warning(f"Unrecognized token lifetime {value!r}, using 15m")
        return DEFAULT_DURATION
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})


@dataclass(frozen=True)
class TokenPayload:
    user_id: str
    email: str
    issued_at: datetime
    expires_at: datetime
    token_type: str = ACCESS


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    def to_api(self) -> dict:
        return {"accessToken": self.access_token, "refreshToken": self.refresh_token}


class TokenService:
    """
    Stateless token issuer/verifier. A token is valid until it expires;
    there is no revocation list.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        algorithm: str = "HS256",
        clock: Callable[[], float] = time.time,
    ):
        if not access_secret or not refresh_secret:
            raise ValueError("Token secrets must not be empty")
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.algorithm = algorithm
        self.clock = clock

    def _issue(self, user_id: str, email: str, token_type: str) -> str:
        secret, ttl = self._secret_and_ttl(token_type)
        now = int(self.clock())
        claims = {
            "sub": user_id,
            "email": email,
            "typ": token_type,
            "iat": now,
            "exp": now + int(ttl.total_seconds()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, secret, algorithm=self.algorithm)

    def _secret_and_ttl(self, token_type: str):
        if token_type == ACCESS:
            return self.access_secret, self.access_ttl
        return self.refresh_secret, self.refresh_ttl

    def issue_access(self, user_id: str, email: str) -> str:
        return self._issue(user_id, email, ACCESS)

    def issue_refresh(self, user_id: str, email: str) -> str:
        return self._issue(user_id, email, REFRESH)

    def issue_pair(self, user_id: str, email: str) -> TokenPair:
        return TokenPair(self.issue_access(user_id, email), self.issue_refresh(user_id, email))

    def verify(self, token: str, secret: str, expected_type: Optional[str] = None) -> TokenPayload:
        """
        Verify a token against a secret.

        Raises:
            TokenError(MALFORMED_TOKEN): not a decodable three-segment JWT
            TokenError(INVALID_SIGNATURE): signature does not match the secret
            TokenError(TOKEN_EXPIRED): valid signature but past its expiry
        """
        if not isinstance(token, str) or token.count(".") != 2:
            raise TokenError(ErrorKind.MALFORMED_TOKEN)

        try:
            # Expiry is checked below against the injected clock
            claims = jwt.decode(
                token, secret, algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "require": ["sub", "exp", "iat"]}
            )
        except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError):
            raise TokenError(ErrorKind.INVALID_SIGNATURE)
        except (jwt.DecodeError, jwt.MissingRequiredClaimError):
            raise TokenError(ErrorKind.MALFORMED_TOKEN)
        except jwt.InvalidTokenError:
            raise TokenError(ErrorKind.UNAUTHORIZED, "Invalid token")

        try:
            issued_at = int(claims["iat"])
            expires_at = int(claims["exp"])
        except (TypeError, ValueError):
            raise TokenError(ErrorKind.MALFORMED_TOKEN)

        if self.clock() >= expires_at:
            raise TokenError(ErrorKind.TOKEN_EXPIRED)

        token_type = claims.get("typ", ACCESS)
        if expected_type and token_type != expected_type:
            raise TokenError(ErrorKind.UNAUTHORIZED, f"Expected an {expected_type} token")

        return TokenPayload(
            user_id=str(claims["sub"]),
            email=claims.get("email", ""),
            issued_at=datetime.fromtimestamp(issued_at, timezone.utc),
            expires_at=datetime.fromtimestamp(expires_at, timezone.utc),
            token_type=token_type,
        )

    def verify_access(self, token: str) -> TokenPayload:
        return self.verify(token, self.access_secret, ACCESS)

    def verify_refresh(self, token: str) -> TokenPayload:
        return self.verify(token, self.refresh_secret, REFRESH)

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a valid refresh token for a fresh pair"""
        payload = self.verify_refresh(refresh_token)
        return self.issue_pair(payload.user_id, payload.email)
