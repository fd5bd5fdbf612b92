"""Exception hierarchy shared by the directory, QR codec and HTTP layer.

Ledger failures have no exception type: the gateway converts them into
``LedgerOutcome`` values and never raises.
"""


class VerisureError(Exception):
    """Base class for all application errors."""


class DirectoryError(VerisureError):
    """The product directory rejected or failed an operation."""


class DuplicateProductError(DirectoryError):
    """A product with the same identifier (or qr token) already exists."""

    def __init__(self, product_id: str):
        super().__init__(f"Product '{product_id}' is already registered")
        self.product_id = product_id


class EncodeError(VerisureError):
    """A token could not be represented as a QR symbol."""


class InvalidImageError(VerisureError):
    """Uploaded bytes could not be read as an image."""
