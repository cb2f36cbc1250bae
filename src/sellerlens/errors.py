"""Exception types raised across SellerLens."""
from __future__ import annotations


class IngestionError(ValueError):
    """A whole file was rejected; nothing from it is committed.

    ``reason`` is one of ``no_header``, ``no_marketplace``, ``too_many_rows``
    or ``unreadable``.
    """

    def __init__(self, file_name: str, reason: str, message: str):
        super().__init__(f"{file_name}: {message}")
        self.file_name = file_name
        self.reason = reason


class ProductMappingError(ValueError):
    """Product master data could not be fetched or parsed."""
