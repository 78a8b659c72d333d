"""Utility modules."""

from app.utils.datetimes import as_utc, utc_date_key, utc_now
from app.utils.normalization import mailbox_identity, normalize_email, normalize_name
from app.utils.pagination import Page, PaginationParams, get_pagination, paginate_query

__all__ = [
    # Datetimes
    "as_utc",
    "utc_date_key",
    "utc_now",
    # Normalization
    "mailbox_identity",
    "normalize_email",
    "normalize_name",
    # Pagination
    "Page",
    "PaginationParams",
    "get_pagination",
    "paginate_query",
]
