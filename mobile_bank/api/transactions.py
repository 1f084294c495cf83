"""
Transfer and transaction history endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .dependencies import BankingSystem, get_banking_system, get_current_user
from .schemas import TransferRequest
from ..errors import BankingError, ErrorKind
from ..tokens import TokenPayload


router = APIRouter()


def create_transfer(
    request: TransferRequest,
    current: TokenPayload = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Move money out of an owned account"""
    # Plain def: FastAPI runs it in the threadpool, so row-lock waits do not block the event loop
    if request.to_account_id and request.to_phone_ref:
        raise BankingError(ErrorKind.VALIDATION_ERROR, "Provide either toAccountId or toPhoneRef, not both")
    destination = request.to_account_id or request.to_phone_ref
    if not destination:
        raise BankingError(ErrorKind.VALIDATION_ERROR, "Recipient account is required")

    transaction = system.transfer_engine.transfer(
        requester_user_id=current.user_id,
        from_account_id=request.from_account_id,
        to_account_ref=destination,
        amount=request.amount,
        description=request.description,
        recipient_name=request.recipient_name,
    )
    return {"transaction": transaction.to_api(system.transfer_engine.currency)}


router.add_api_route(
    "/transfer", create_transfer, methods=["POST"], status_code=201
)


@router.get("/history")
def get_history(
    page: Optional[str] = Query("1"),
    limit: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    current: TokenPayload = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
):
    """Paginated, filtered history of the user's transactions"""
    result = system.history.query(
        current.user_id,
        page=page,
        limit=limit,
        type=type,
        status=status,
        search=search,
        start_date=start_date,
        end_date=end_date,
    )
    currency = system.transfer_engine.currency
    return {
        "transactions": [item.to_api(currency) for item in result.items],
        "pagination": result.pagination(),
    }
