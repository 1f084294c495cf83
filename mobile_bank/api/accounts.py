"""
Account read endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import BankingSystem, get_banking_system, get_current_user
from ..currency import format_amount
from ..tokens import TokenPayload


router = APIRouter()


@router.get("")
def list_accounts(
    current: TokenPayload = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """List the user's accounts"""
    accounts = system.ledger.list_accounts(current.user_id)
    return {"accounts": [account.to_api() for account in accounts]}


@router.get("/{account_id}")
def get_account(
    account_id: str,
    current: TokenPayload = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get one owned account"""
    account = system.ledger.get_account(account_id, current.user_id)
    return {"account": account.to_api()}


@router.get("/{account_id}/balance")
def get_balance(
    account_id: str,
    current: TokenPayload = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Authoritative balance of an owned account"""
    balance = system.ledger.get_balance(account_id, current.user_id)
    return {
        "balance": format_amount(balance.amount, balance.currency),
        "currency": balance.currency.code,
    }
