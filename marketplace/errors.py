"""Error taxonomy for the catalog cache core."""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base marketplace error."""


class CollaboratorUnavailableError(MarketplaceError):
    """A document store or cache store call failed."""


class DocumentStoreError(CollaboratorUnavailableError):
    """Raised when the document store cannot complete an operation."""


class CacheStoreError(CollaboratorUnavailableError):
    """Raised when the key-value cache store cannot complete an operation."""


class DocumentNotFoundError(MarketplaceError):
    """Raised when a single document does not exist."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"No document '{doc_id}' in {collection}")
        self.collection = collection
        self.doc_id = doc_id


class InvalidDocumentIdError(MarketplaceError):
    """Raised for clearly malformed document IDs."""


class SnapshotUnavailableError(MarketplaceError):
    """Raised when no snapshot exists and a refresh could not build one."""
