"""
Transaction History Module

Read-only, paginated and filtered view over a user's transaction log.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, List, Optional, Union

from .errors import BankingError, ErrorKind
from .models import Transaction, TransactionType, TransactionStatus
from .storage import StorageInterface, TransactionQuery


DateInput = Union[str, date, datetime, None]


@dataclass
class HistoryPage:
    """One page of history plus pagination metadata"""
    items: List[Transaction]
    total: int
    page: int
    limit: int
    total_pages: int = field(init=False)
    has_more: bool = field(init=False)

    def __post_init__(self):
        self.total_pages = math.ceil(self.total / self.limit) if self.total else 0
        self.has_more = self.page < self.total_pages

    def pagination(self) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "totalPages": self.total_pages,
            "hasMore": self.has_more,
        }


def _parse_bound(value: DateInput, name: str, end_of_range: bool) -> Optional[datetime]:
    """
    Parse a date filter into a UTC datetime.

    A date-only upper bound covers that whole day, so it becomes the start of
    the following day (used as an exclusive bound).
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed, date_only = value, False
    elif isinstance(value, date):
        parsed, date_only = datetime.combine(value, time.min), True
    elif isinstance(value, str):
        text = value.strip()
        date_only = len(text) == 10
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise BankingError(ErrorKind.VALIDATION_ERROR, f"Invalid {name}: {value!r}")
    else:
        raise BankingError(ErrorKind.VALIDATION_ERROR, f"Invalid {name}: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)

    if end_of_range:
        # Datetime upper bounds are inclusive; storage uses an exclusive bound
        parsed += timedelta(days=1) if date_only else timedelta(microseconds=1)
    return parsed


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise BankingError(ErrorKind.VALIDATION_ERROR, f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BankingError(ErrorKind.VALIDATION_ERROR, f"{name} must be an integer")


class TransactionHistory:
    """
    Paginated history queries for the authenticated user
    """

    def __init__(self, storage: StorageInterface, default_limit: int = 20, max_limit: int = 100):
        self.storage = storage
        self.default_limit = default_limit
        self.max_limit = max_limit

    def query(
        self,
        owner_user_id: str,
        page: Any = 1,
        limit: Any = None,
        type: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        start_date: DateInput = None,
        end_date: DateInput = None,
    ) -> HistoryPage:
        """
        Return one page of the user's transactions, newest first.

        Raises:
            BankingError(VALIDATION_ERROR): page < 1, limit outside 1..max_limit,
                unknown type or status, unparseable dates, start after end
        """
        page = _parse_int(page, "page")
        limit = self.default_limit if limit is None else _parse_int(limit, "limit")
        if page < 1:
            raise BankingError(ErrorKind.VALIDATION_ERROR, "page must be at least 1")
        if not 1 <= limit <= self.max_limit:
            raise BankingError(ErrorKind.VALIDATION_ERROR, f"limit must be between 1 and {self.max_limit}")

        if type:
            try:
                type = TransactionType(type).value
            except ValueError:
                raise BankingError(ErrorKind.VALIDATION_ERROR, f"Unknown transaction type: {type}")
        if status:
            try:
                status = TransactionStatus(status).value
            except ValueError:
                raise BankingError(ErrorKind.VALIDATION_ERROR, f"Unknown transaction status: {status}")

        start = _parse_bound(start_date, "startDate", end_of_range=False)
        end = _parse_bound(end_date, "endDate", end_of_range=True)
        if start and end and start >= end:
            raise BankingError(ErrorKind.VALIDATION_ERROR, "startDate must not be after endDate")

        query = TransactionQuery(
            user_id=owner_user_id,
            type=type or None,
            status=status or None,
            search=search.strip() if search and search.strip() else None,
            start=start,
            end=end,
        )
        rows, total = self.storage.query_transactions(query, limit, (page - 1) * limit)
        return HistoryPage(
            items=[Transaction.from_row(row) for row in rows],
            total=total,
            page=page,
            limit=limit,
        )
