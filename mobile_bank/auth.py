"""
User Credential Module

Registration, password login and the biometric opt-in flag. Passwords are
hashed with salted scrypt; the stored form is
``scrypt$<n>$<r>$<p>$<salt hex>$<hash hex>`` so cost parameters can change
without invalidating existing hashes.
"""

import hashlib
import hmac
import re
import secrets
from typing import Optional

from .errors import BankingError, ErrorKind
from .logging_config import get_logger, log_action
from .models import User, monotonic_utc_now, new_id
from .storage import StorageInterface


logger = get_logger("mobile_bank.auth")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


def validate_password(password: str, min_length: int = 8) -> Optional[str]:
    """Return a message describing the first strength rule the password breaks"""
    if len(password) < min_length:
        return f"Password must be at least {min_length} characters long"
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"\d", password):
        return "Password must contain at least one number"
    if not SPECIAL_CHARACTERS.search(password):
        return "Password must contain at least one special character"
    return None


class PasswordHasher:
    """Salted scrypt hashing"""

    def __init__(self, n: int = 16384, r: int = 8, p: int = 1):
        self.n = n
        self.r = r
        self.p = p

    def hash(self, password: str) -> str:
        salt = secrets.token_hex(16)
        digest = hashlib.scrypt(password.encode(), salt=salt.encode(), n=self.n, r=self.r, p=self.p)
        return f"scrypt${self.n}${self.r}${self.p}${salt}${digest.hex()}"

    def verify(self, password: str, stored: str) -> bool:
        try:
            scheme, n, r, p, salt, expected = stored.split("$")
            if scheme != "scrypt":
                return False
            digest = hashlib.scrypt(
                password.encode(), salt=salt.encode(), n=int(n), r=int(r), p=int(p)
            )
        except (ValueError, AttributeError):
            return False
        return hmac.compare_digest(digest.hex(), expected)


class UserService:
    """
    Manages app users and their credentials
    """

    def __init__(self, storage: StorageInterface, hasher: Optional[PasswordHasher] = None,
                 password_min_length: int = 8):
        self.storage = storage
        self.hasher = hasher or PasswordHasher()
        self.password_min_length = password_min_length

    def register(self, email: str, name: str, phone_number: str, password: str) -> User:
        """
        Create a user.

        Raises:
            BankingError(VALIDATION_ERROR): malformed email, short name or phone,
                weak password
            BankingError(DUPLICATE_ENTRY): email already registered
        """
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise BankingError(ErrorKind.VALIDATION_ERROR, "Invalid email format")
        name = (name or "").strip()
        if len(name) < 2:
            raise BankingError(ErrorKind.VALIDATION_ERROR, "Name must be at least 2 characters")
        phone_number = (phone_number or "").strip()
        if len(re.sub(r"\D", "", phone_number)) < 10:
            raise BankingError(ErrorKind.VALIDATION_ERROR, "Phone number must be at least 10 digits")
        problem = validate_password(password or "", self.password_min_length)
        if problem:
            raise BankingError(ErrorKind.VALIDATION_ERROR, problem)

        if self.storage.get_user_by_email(email):
            raise BankingError(ErrorKind.DUPLICATE_ENTRY, "User with this email already exists")

        now = monotonic_utc_now()
        user = User(
            id=new_id(),
            created_at=now,
            updated_at=now,
            email=email,
            name=name,
            password_hash=self.hasher.hash(password),
            phone_number=phone_number,
        )
        self.storage.insert_user(user.to_dict())

        log_action(logger, "info", "User registered", user_id=user.id, action="register", resource="auth")
        return user

    def authenticate(self, email: str, password: str) -> User:
        """
        Check an email/password pair.

        Unknown email and wrong password are indistinguishable to the caller.
        """
        row = self.storage.get_user_by_email((email or "").strip().lower())
        if row is None or not self.hasher.verify(password or "", row['password_hash']):
            log_action(logger, "warning", "Authentication failed", action="login_failed", resource="auth")
            raise BankingError(ErrorKind.INVALID_CREDENTIALS)

        user = User.from_row(row)
        log_action(logger, "info", "User authenticated", user_id=user.id, action="login", resource="auth")
        return user

    def get_user(self, user_id: str) -> User:
        row = self.storage.get_user(user_id)
        if row is None:
            raise BankingError(ErrorKind.UNAUTHORIZED, "User not found")
        return User.from_row(row)

    def set_biometric(self, user_id: str, enabled: bool) -> User:
        """Record the user's biometric opt-in"""
        row = self.storage.update_user(user_id, {
            "biometric_enabled": bool(enabled),
            "updated_at": monotonic_utc_now(),
        })
        if row is None:
            raise BankingError(ErrorKind.UNAUTHORIZED, "User not found")

        log_action(
            logger, "info", "Biometric preference updated",
            user_id=user_id, action="set_biometric", resource="auth",
            extra={"enabled": bool(enabled)}
        )
        return User.from_row(row)
