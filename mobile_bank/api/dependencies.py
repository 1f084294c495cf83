"""
Application container and request dependencies
"""

from decimal import Decimal
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..accounts import AccountLedger
from ..auth import PasswordHasher, UserService
from ..config import MobileBankConfig, get_config
from ..errors import BankingError, ErrorKind
from ..history import TransactionHistory
from ..logging_config import get_logger
from ..storage import StorageInterface, create_storage
from ..tokens import TokenPayload, TokenService, parse_duration
from ..transfers import DestinationPolicy, TransferEngine


logger = get_logger("mobile_bank.api")

security = HTTPBearer(auto_error=False)


class BankingSystem:
    """Transfer core with all components wired to one storage backend"""

    def __init__(self, config: Optional[MobileBankConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()

        if self.config.uses_default_secrets():
            logger.warning("Token secrets are using their default values; set MOBILE_BANK_JWT_SECRET "
                           "and MOBILE_BANK_JWT_REFRESH_SECRET")

        self.storage = storage or create_storage(
            self.config.database_url,
            pool_size=self.config.database_pool_size,
            lock_timeout=self.config.database_lock_timeout,
        )
        self.ledger = AccountLedger(self.storage, allow_credit_overdraft=self.config.allow_credit_overdraft)
        self.transfer_engine = TransferEngine(
            self.storage,
            self.ledger,
            destination_policy=DestinationPolicy(self.config.destination_policy),
            max_transaction_amount=Decimal(self.config.max_transaction_amount),
        )
        self.history = TransactionHistory(
            self.storage,
            default_limit=self.config.history_default_limit,
            max_limit=self.config.history_max_limit,
        )
        self.users = UserService(
            self.storage,
            PasswordHasher(self.config.scrypt_n, self.config.scrypt_r, self.config.scrypt_p),
            password_min_length=self.config.password_min_length,
        )
        self.tokens = TokenService(
            self.config.jwt_secret,
            self.config.jwt_refresh_secret,
            access_ttl=parse_duration(self.config.jwt_expires_in),
            refresh_ttl=parse_duration(self.config.jwt_refresh_expires_in),
            algorithm=self.config.jwt_algorithm,
        )

    def close(self) -> None:
        self.storage.close()


_banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    """Process-wide system, built from configuration on first use"""
    global _banking_system
    if _banking_system is None:
        _banking_system = BankingSystem()
    return _banking_system


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: BankingSystem = Depends(get_banking_system),
) -> TokenPayload:
    """Verify the bearer access token and return its payload"""
    if credentials is None or not credentials.credentials:
        raise BankingError(ErrorKind.UNAUTHORIZED, "No token provided")
    return system.tokens.verify_access(credentials.credentials)
