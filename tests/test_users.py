"""
Tests for registration, password login and the biometric preference
"""

import pytest

from mobile_bank.auth import UserService, PasswordHasher, validate_password
from mobile_bank.errors import BankingError, ErrorKind
from mobile_bank.storage import InMemoryStorage


# Low scrypt cost keeps the suite fast
FAST_HASHER = PasswordHasher(n=16, r=1, p=1)
PASSWORD = "Secret@123"


class TestPasswordHasher:

    def test_hash_and_verify(self):
        stored = FAST_HASHER.hash(PASSWORD)
        assert stored.startswith("scrypt$16$1$1$")
        assert FAST_HASHER.verify(PASSWORD, stored)
        assert not FAST_HASHER.verify("Secret@124", stored)

    def test_salts_differ(self):
        assert FAST_HASHER.hash(PASSWORD) != FAST_HASHER.hash(PASSWORD)

    def test_stored_parameters_win(self):
        stored = PasswordHasher(n=32, r=1, p=1).hash(PASSWORD)
        assert FAST_HASHER.verify(PASSWORD, stored)

    @pytest.mark.parametrize("stored", ["", "plain", "bcrypt$1$1$1$aa$bb", "scrypt$x$1$1$aa$bb"])
    def test_garbage_hash_never_matches(self, stored):
        assert not FAST_HASHER.verify(PASSWORD, stored)


class TestValidatePassword:

    @pytest.mark.parametrize("password,fragment", [
        ("Ab@1", "at least 8"),
        ("ABCDEFG@1", "lowercase"),
        ("abcdefg@1", "uppercase"),
        ("Abcdefg@h", "number"),
        ("Abcdefgh1", "special"),
    ])
    def test_rules(self, password, fragment):
        assert fragment in validate_password(password)

    def test_strong_password(self):
        assert validate_password(PASSWORD) is None


class TestUserService:
    """Test UserService functionality"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.users = UserService(self.storage, hasher=FAST_HASHER)

    def register(self, email="Ada@Example.com"):
        return self.users.register(email, "Ada Lovelace", "+1 555 010 0001", PASSWORD)

    def test_register_normalizes_email(self):
        user = self.register()
        assert user.email == "ada@example.com"
        assert not user.biometric_enabled
        assert user.password_hash != PASSWORD
        assert "passwordHash" not in user.to_api()
        assert "password_hash" not in user.to_api()

    def test_duplicate_email(self):
        self.register()
        with pytest.raises(BankingError) as exc:
            self.register("ADA@example.com")
        assert exc.value.kind == ErrorKind.DUPLICATE_ENTRY
        assert exc.value.status_code == 409

    @pytest.mark.parametrize("email,name,phone,password", [
        ("not-an-email", "Ada", "5550100001", PASSWORD),
        ("ada@example.com", "A", "5550100001", PASSWORD),
        ("ada@example.com", "Ada", "555-0100", PASSWORD),
        ("ada@example.com", "Ada", "5550100001", "weak"),
        (None, "Ada", "5550100001", PASSWORD),
    ])
    def test_register_validation(self, email, name, phone, password):
        with pytest.raises(BankingError) as exc:
            self.users.register(email, name, phone, password)
        assert exc.value.kind == ErrorKind.VALIDATION_ERROR

    def test_authenticate(self):
        user = self.register()
        assert self.users.authenticate("ADA@example.com", PASSWORD).id == user.id

    def test_wrong_password_and_unknown_email_look_the_same(self):
        self.register()
        with pytest.raises(BankingError) as wrong_password:
            self.users.authenticate("ada@example.com", "Secret@999")
        with pytest.raises(BankingError) as unknown_email:
            self.users.authenticate("nobody@example.com", PASSWORD)
        assert wrong_password.value.kind == unknown_email.value.kind == ErrorKind.INVALID_CREDENTIALS
        assert wrong_password.value.message == unknown_email.value.message

    def test_set_biometric(self):
        user = self.register()
        updated = self.users.set_biometric(user.id, True)
        assert updated.biometric_enabled
        assert self.users.get_user(user.id).biometric_enabled

        assert not self.users.set_biometric(user.id, False).biometric_enabled

    def test_unknown_user(self):
        with pytest.raises(BankingError) as exc:
            self.users.get_user("missing")
        assert exc.value.kind == ErrorKind.UNAUTHORIZED
        with pytest.raises(BankingError):
            self.users.set_biometric("missing", True)
