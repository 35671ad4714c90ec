"""Page/page_size pagination for purchase listings.

Offset pages are used where a customer browses their purchases
(`GET /payments/transactions`). The ledger history uses keyset cursors
instead, see `LedgerService.history`.

    ?page=1&page_size=10
    -> {"items": [...], "total": 42, "page": 1, "page_size": 10, "pages": 5}
"""

from typing import TypeVar

from fastapi import Query
from fastapi_pagination import Page
from fastapi_pagination.customization import CustomizedPage, UseFieldsAliases, UseParamsFields

__all__ = ["CustomPage", "DEFAULT_PAGE_SIZE", "MAX_PAGE_SIZE"]

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50

CustomPage = CustomizedPage[
    Page[T],
    UseParamsFields(
        size=Query(
            DEFAULT_PAGE_SIZE,
            ge=1,
            le=MAX_PAGE_SIZE,
            alias="page_size",
            description="Purchases per page",
        ),
    ),
    UseFieldsAliases(size="page_size"),
]
