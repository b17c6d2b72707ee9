"""Exceptions raised by the Query, Overlay and Recover operations."""

from typing import List, Optional


class QORError(Exception):
    """Base exception for the QOR pipeline."""
    pass


class MissingInputError(QORError, ValueError):
    """Raised when a required collection is absent, empty or of the wrong type."""
    pass


class SchemaError(QORError, ValueError):
    """Raised when an input collection does not have the expected layout."""
    pass


class MissingColumnError(SchemaError):
    """Raised when a named id/zip/region column is not in its collection."""

    def __init__(self, column: str, collection: str):
        self.column = column
        self.collection = collection
        super().__init__(f"Column '{column}' is not found in the {collection} dataset.")


class DuplicateIdentifierError(QORError, ValueError):
    """Raised when a declared unique-id column is not actually unique."""

    def __init__(self, column: str, collection: str, duplicates: Optional[List] = None):
        self.column = column
        self.collection = collection
        self.duplicates = duplicates or []
        preview = ", ".join(str(d) for d in self.duplicates[:10])
        super().__init__(
            f"Column '{column}' does not uniquely identify each row of the {collection} "
            f"dataset ({len(self.duplicates)} duplicated values: {preview})"
        )


class InvalidGeometryError(QORError, ValueError):
    """Raised when a geometry cannot be repaired into what the pipeline needs."""

    def __init__(self, message: str, ids: Optional[List] = None):
        super().__init__(message)
        self.ids = ids or []


class ConfigurationError(QORError, ValueError):
    """Raised when the region filter options are inconsistent with the data."""
    pass


class AssignmentError(QORError):
    """Raised when a point could not be given exactly one polygon."""
    pass


class GeocodingError(QORError):
    """Raised when the Query stage could not locate any unit."""
    pass
