"""Input checks and column standardization, done once at the interface boundary."""

import logging
from typing import Dict, Iterable, Optional, Tuple

import geopandas as gpd
import pandas as pd

from .exceptions import (
    ConfigurationError,
    DuplicateIdentifierError,
    MissingColumnError,
    MissingInputError,
    SchemaError,
)
from .models import FieldMapping, RegionFilter

logger = logging.getLogger(__name__)


def require_frame(obj, name: str, spatial: bool = True, allow_empty: bool = True):
    """Fail fast when a required collection is absent or of the wrong type."""
    if obj is None:
        raise MissingInputError(f"The {name} dataset must be provided.")
    if spatial and not isinstance(obj, gpd.GeoDataFrame):
        raise MissingInputError(
            f"The {name} dataset must be a GeoDataFrame (convert it with geopandas first)."
        )
    if not spatial and not isinstance(obj, pd.DataFrame):
        raise MissingInputError(f"The {name} dataset must be a DataFrame.")
    if not allow_empty and len(obj) == 0:
        raise MissingInputError(f"The {name} dataset is empty.")
    return obj


def require_columns(df: pd.DataFrame, columns: Iterable[str], collection: str) -> None:
    for column in columns:
        if column not in df.columns:
            raise MissingColumnError(column, collection)


def id_strings(values: pd.Series) -> pd.Series:
    """Identifiers as strings; integral floats lose their ".0"."""
    def _one(v):
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v)
    return values.map(_one)


def require_unique(df: pd.DataFrame, column: str, collection: str) -> None:
    """The declared id column must be present, non-null and unique."""
    if df[column].isna().any():
        raise SchemaError(
            f"Column '{column}' of the {collection} dataset has {int(df[column].isna().sum())} missing ids."
        )
    ids = id_strings(df[column])
    dupes = ids[ids.duplicated(keep=False)]
    if len(dupes):
        raise DuplicateIdentifierError(column, collection, sorted(dupes.unique().tolist()))


def standardize(
    gdf: gpd.GeoDataFrame, mapping: FieldMapping, canonical_id: str, collection: str
) -> Tuple[gpd.GeoDataFrame, Dict[str, object]]:
    """
    Reduce ``gdf`` to ``[canonical_id, "geometry"]`` with string ids.

    Returns the standardized copy and a lookup from string id back to the
    caller's original id value, used to restore ids on output.
    """
    geometry_field = mapping.geometry_field or gdf.geometry.name
    if geometry_field not in gdf.columns:
        raise MissingColumnError(geometry_field, collection)
    geoms = gpd.GeoSeries(gdf[geometry_field])
    crs = geoms.crs or gdf.crs
    ids = id_strings(gdf[mapping.id_field])
    out = gpd.GeoDataFrame(
        {canonical_id: ids.values},
        geometry=geoms.values,
        crs=crs,
    )
    lookup = dict(zip(ids.values, gdf[mapping.id_field].values))
    return out, lookup


def _normalize_code(value) -> str:
    text = str(value).strip()
    if text.endswith(".0") and text[:-2].isdigit():
        text = text[:-2]
    if text.isdigit():
        return text.lstrip("0") or "0"
    return text.upper()


def detect_region_column(polygons: pd.DataFrame) -> str:
    """First column whose name starts with "state" (e.g. STATEFP in NCES/TIGER layers)."""
    for column in polygons.columns:
        if str(column).lower().startswith("state"):
            return column
    raise ConfigurationError(
        "A region filter was given without a region column, and no column starting with "
        "'state' was found in the polygons dataset."
    )


def _region_mask(polygons: pd.DataFrame, column: str, region_filter: RegionFilter) -> pd.Series:
    wanted = _normalize_code(region_filter.code)
    return polygons[column].map(_normalize_code) == wanted


def resolve_region_filter(polygons: pd.DataFrame, region_filter: Optional[RegionFilter]) -> Optional[str]:
    """
    Check the region filter against the polygons and return the column it reads.

    Raises:
        MissingColumnError: the named column is not in the polygons.
        ConfigurationError: no region column can be found, or the code matches no polygon.
    """
    if region_filter is None:
        return None
    column = region_filter.column or detect_region_column(polygons)
    if column not in polygons.columns:
        raise MissingColumnError(column, "polygons")
    if not _region_mask(polygons, column, region_filter).any():
        raise ConfigurationError(
            f"Region code '{region_filter.code}' matches no polygon in column '{column}'."
        )
    return column


def apply_region_filter(
    polygons: gpd.GeoDataFrame,
    region_filter: Optional[RegionFilter],
    national_polygons: bool = False,
) -> gpd.GeoDataFrame:
    """
    Restrict a national polygon layer to one region. Purely a speed-up: the
    nearest/containing polygon never lies outside the region of the points.
    """
    if region_filter is None:
        if national_polygons:
            logger.warning(
                "National polygon layers can be filtered to one region before matching; "
                "supply a region filter (e.g. RegionFilter('37') for North Carolina) to speed this up."
            )
        return polygons

    column = resolve_region_filter(polygons, region_filter)
    keep = _region_mask(polygons, column, region_filter)
    logger.info(f"Region filter {column}={region_filter.code}: kept {int(keep.sum())}/{len(polygons)} polygons")
    return polygons.loc[keep]
