"""QOR engine: geocode (Query), match points to polygons (Overlay), and place leftovers by zip code (Recover)."""

from .batch import run_jobs
from .config import Config
from .exceptions import (
    AssignmentError,
    ConfigurationError,
    DuplicateIdentifierError,
    GeocodingError,
    InvalidGeometryError,
    MissingColumnError,
    MissingInputError,
    QORError,
    SchemaError,
)
from .models import FieldMapping, OverlayResult, QueryResult, RecoveryResult, RegionFilter
from .overlay import overlay
from .query import CensusGeocoder, query
from .recover import normalize_postal_code, recover

__all__ = [
    "overlay", "recover", "query", "run_jobs", "normalize_postal_code",
    "Config", "FieldMapping", "RegionFilter", "CensusGeocoder",
    "OverlayResult", "RecoveryResult", "QueryResult",
    "QORError", "MissingInputError", "SchemaError", "MissingColumnError",
    "DuplicateIdentifierError", "InvalidGeometryError", "ConfigurationError",
    "AssignmentError", "GeocodingError",
]
