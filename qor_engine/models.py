"""Data models for the QOR pipeline."""

import math
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

import geopandas as gpd
import pandas as pd


@dataclass(frozen=True)
class FieldMapping:
    """Which caller columns hold the id and the geometry of one collection."""
    id_field: str
    geometry_field: Optional[str] = None  # None = the active geometry column


@dataclass(frozen=True)
class RegionFilter:
    """Restricts a national polygon layer to one region, e.g. code="37", column="STATEFP"."""
    code: str
    column: Optional[str] = None  # None = first column whose name starts with "state"


@dataclass
class GeocodedAddress:
    lat: float
    lon: float
    matched_address: str = ""
    match_type: str = ""
    block_geoid: str = ""


@dataclass
class MatchRecord:
    point_id: str
    polygon_id: str
    distance: Optional[float] = None


@dataclass
class RecoveryRecord:
    unit_id: str
    polygon_id: str
    postal_code: str
    distance: float
    matched_by_zip: bool = True


@dataclass
class UnrecoverableUnit:
    unit_id: str
    postal_code: Optional[str]
    reason: str = "postal_code_not_found"


@dataclass
class Classification:
    """Partition of point ids by how many polygons each point intersects."""
    single: List[str] = field(default_factory=list)
    none: List[str] = field(default_factory=list)
    multiple: List[str] = field(default_factory=list)
    pairs: pd.DataFrame = field(default_factory=lambda: pd.DataFrame(columns=["point_id", "polygon_id"]))

    @property
    def total(self) -> int:
        return len(self.single) + len(self.none) + len(self.multiple)

    def counts(self) -> dict:
        return {
            "single": len(self.single),
            "none": len(self.none),
            "multiple": len(self.multiple),
        }


def _none_if_nan(value):
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


@dataclass
class OverlayResult:
    """Overlay output: one row per input point plus the bucket report."""
    matches: pd.DataFrame
    classification: Classification
    point_id: str = "point_id"
    polygon_id: str = "polygon_id"

    def __len__(self) -> int:
        return len(self.matches)

    def records(self) -> List[MatchRecord]:
        return [
            MatchRecord(
                point_id=row[self.point_id],
                polygon_id=row[self.polygon_id],
                distance=_none_if_nan(row["distance"]),
            )
            for row in self.matches.to_dict("records")
        ]


@dataclass
class RecoveryResult:
    """Recover output. Unpacks as ``matches, unrecoverable``."""
    matches: pd.DataFrame
    unrecoverable: pd.DataFrame
    unit_id: str = "unit_id"
    polygon_id: str = "polygon_id"
    unit_zip: str = "postalcode"

    def __iter__(self) -> Iterator[pd.DataFrame]:
        return iter((self.matches, self.unrecoverable))

    def records(self) -> List[RecoveryRecord]:
        return [
            RecoveryRecord(
                unit_id=row[self.unit_id],
                polygon_id=row[self.polygon_id],
                postal_code=row[self.unit_zip],
                distance=float(row["distance"]),
                matched_by_zip=bool(row["matched_by_zip"]),
            )
            for row in self.matches.to_dict("records")
        ]

    def unrecoverable_records(self) -> List[UnrecoverableUnit]:
        return [
            UnrecoverableUnit(
                unit_id=row[self.unit_id],
                postal_code=_none_if_nan(row[self.unit_zip]),
                reason=row["reason"],
            )
            for row in self.unrecoverable.to_dict("records")
        ]


@dataclass
class QueryResult:
    """Query output: located units as EPSG:4326 points, everything else unmatched."""
    matched: gpd.GeoDataFrame
    unmatched: pd.DataFrame

    def __iter__(self):
        return iter((self.matched, self.unmatched))
