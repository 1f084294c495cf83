"""
Shared fixtures: an in-memory banking system with fast password hashing
"""

import pytest

from mobile_bank.api.dependencies import BankingSystem
from mobile_bank.config import MobileBankConfig
from mobile_bank.storage import InMemoryStorage


@pytest.fixture
def test_config():
    return MobileBankConfig(
        database_url="memory://",
        jwt_secret="test-access-secret-0123456789abcdef",
        jwt_refresh_secret="test-refresh-secret-0123456789abcdef",
        scrypt_n=16,
        scrypt_r=1,
        scrypt_p=1,
        max_transaction_amount="10000.00",
    )


@pytest.fixture
def banking_system(test_config):
    system = BankingSystem(test_config, storage=InMemoryStorage())
    yield system
    system.close()
