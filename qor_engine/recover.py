"""Recover: place units without a geocoded point via the centroid of their zip code area."""

import logging
import math
import re
import time
from numbers import Integral
from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd

from .assignment import nearest
from .config import Config
from .distance import DISTANCE, iter_distance_tables
from .exceptions import AssignmentError
from .geometry import centroids, region_geometry, repair_polygons
from .inputs import (
    require_columns,
    require_frame,
    require_unique,
    resolve_region_filter,
    standardize,
)
from .models import FieldMapping, RecoveryResult, RegionFilter
from .overlay import check_output_names, prepare_polygons
from .progress import Progress, ProgressCallback
from .spatial_index import POLYGON_ID

logger = logging.getLogger(__name__)

POSTAL_CODE = "postal_code"
MATCHED_BY_ZIP = "matched_by_zip"
REASON = "reason"
UNIT_ROW = "unit_row"

_ZIP5_OR_ZIP9 = re.compile(r"^(\d{5})(?:[-\s]?\d{4})?$")


def normalize_postal_code(value) -> Optional[str]:
    """
    Five-digit zip code for lookup against ZCTA-style ids.

    "27601-1234", "27601 1234" and "276011234" all become "27601"; leading
    zeros dropped by numeric storage are restored (2760 -> "02760").
    Returns None for missing or unparseable values.
    """
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value) or not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, Integral) and not isinstance(value, bool):
        text = str(int(value))
        if len(text) <= 5:
            return text.zfill(5)
        if len(text) <= 9:
            return text.zfill(9)[:5]
        return None

    text = str(value).strip()
    if text.endswith(".0"):
        text = text[:-2]
    match = _ZIP5_OR_ZIP9.match(text)
    if match:
        return match.group(1)
    if text.isdigit() and 3 <= len(text) <= 4:
        return text.zfill(5)
    if text.isdigit() and len(text) == 8:
        return text.zfill(9)[:5]
    return None


def postal_codes(values: pd.Series) -> np.ndarray:
    """Normalized codes as an object array, None where unusable."""
    return np.array([normalize_postal_code(v) for v in values], dtype=object)


def prepare_zip_areas(zip_areas: gpd.GeoDataFrame, zip_id: str, config: Config) -> gpd.GeoDataFrame:
    """Standardize zip areas to ``[postal_code, geometry]`` with normalized codes."""
    zips, _ = standardize(zip_areas, FieldMapping(zip_id), POSTAL_CODE, "zipcodes")
    zips[POSTAL_CODE] = postal_codes(zip_areas[zip_id])

    unusable = zips[POSTAL_CODE].isna()
    if unusable.any():
        logger.warning(f"Zipcodes: dropping {int(unusable.sum())} areas whose id is not a zip code")
        zips = zips.loc[~unusable]
    require_unique(zips, POSTAL_CODE, "zipcodes (normalized)")

    zips = repair_polygons(zips, POSTAL_CODE, "zipcodes")
    if zips.crs is None:
        logger.warning(f"Zipcodes have no CRS; assuming {config.default_crs}")
        zips = zips.set_crs(config.default_crs)
    return zips


def nearest_polygon_by_zip(
    zips: gpd.GeoDataFrame,
    interior: gpd.GeoDataFrame,
    config: Config,
    progress: Optional[ProgressCallback] = None,
) -> pd.DataFrame:
    """
    ``[postal_code, polygon_id, distance]``: for each zip area, the polygon
    whose interior point is nearest its centroid. A centroid never "contains"
    a district, so every polygon is a candidate.
    """
    cents = centroids(zips, POSTAL_CODE)
    tracker = Progress("Zip-centroid distance resolution", len(cents),
                       every=config.progress_every, callback=progress)
    frames = []
    for table in iter_distance_tables(cents, interior, config.distance_chunk_size,
                                      source_key=POSTAL_CODE, target_key=POLYGON_ID):
        frames.append(nearest(table, key=POSTAL_CODE, target=POLYGON_ID))
        tracker.advance(table[POSTAL_CODE].nunique())
    if not frames:
        return pd.DataFrame({
            POSTAL_CODE: pd.Series(dtype=object),
            POLYGON_ID: pd.Series(dtype=object),
            DISTANCE: pd.Series(dtype=float),
        })
    return pd.concat(frames, ignore_index=True)


def recover(
    units: Optional[pd.DataFrame] = None,
    polygons: Optional[gpd.GeoDataFrame] = None,
    zip_areas: Optional[gpd.GeoDataFrame] = None,
    unit_id: str = "unit_id",
    unit_zip: str = "postalcode",
    polygon_id: str = "polygon_id",
    zip_id: str = "postalcode",
    region_boundary: Optional[gpd.GeoDataFrame] = None,
    region_filter: Optional[RegionFilter] = None,
    national_polygons: bool = False,
    config: Optional[Config] = None,
    progress: Optional[ProgressCallback] = None,
) -> RecoveryResult:
    """
    Assign a polygon to units that Query could not place, using their zip code.

    Each unit's zip code (ZIP+4 truncated to five digits) is looked up in the
    zip areas; the unit gets the polygon whose interior point is nearest that
    zip area's centroid. Units with no usable zip code, or one missing from
    the zip areas (or outside ``region_boundary``), go to ``unrecoverable``.
    Every unit appears in exactly one of the two outputs.

    Args:
        units: DataFrame of unplaced units (e.g. ``QueryResult.unmatched``).
        polygons: GeoDataFrame of boundaries, reprojected to the zip areas' CRS.
        zip_areas: GeoDataFrame of zip code (ZCTA) areas.
        unit_id / unit_zip: unit id and zip code columns of ``units``.
        polygon_id / zip_id: id columns of ``polygons`` and ``zip_areas``.
        region_boundary: only zip areas inside this region are used.
        region_filter: restrict a national polygon layer to one region first.
        national_polygons: polygons are a national layer (warn when unfiltered).
        config: pipeline configuration.
        progress: optional ``callback(stage, done, total)``.

    Returns:
        RecoveryResult(matches=[unit_id, polygon_id, unit_zip, distance,
        matched_by_zip], unrecoverable=[unit_id, unit_zip, reason]).
    """
    config = config or Config()
    t0 = time.time()

    # All input checks before any geometry work
    require_frame(units, "units", spatial=False)
    require_frame(polygons, "polygons", allow_empty=False)
    require_frame(zip_areas, "zipcodes", allow_empty=False)
    if region_boundary is not None:
        require_frame(region_boundary, "region boundary", allow_empty=False)
    require_columns(units, [unit_id, unit_zip], "units")
    require_columns(polygons, [polygon_id], "polygons")
    require_columns(zip_areas, [zip_id], "zipcodes")
    check_output_names(unit_id, polygon_id, unit_zip, MATCHED_BY_ZIP, REASON)
    require_unique(units, unit_id, "units")
    require_unique(polygons, polygon_id, "polygons")
    require_unique(zip_areas, zip_id, "zipcodes")
    resolve_region_filter(polygons, region_filter)

    zips = prepare_zip_areas(zip_areas, zip_id, config)
    polys, interior, polygon_lookup = prepare_polygons(
        polygons, FieldMapping(polygon_id), zips.crs, region_filter, national_polygons,
    )
    if region_boundary is not None:
        region = region_geometry(region_boundary, zips.crs)
        inside = zips.geometry.intersects(region) & ~zips.geometry.touches(region)
        logger.info(f"Region boundary: kept {int(inside.sum())}/{len(zips)} zip areas")
        zips = zips.loc[inside]

    ids = units[unit_id].to_numpy()
    provided = units[unit_zip].to_numpy()
    normalized = postal_codes(units[unit_zip])
    known = set(zips[POSTAL_CODE])
    missing = np.array([pd.isna(code) for code in normalized], dtype=bool)
    recoverable = np.array(
        [not gone and code in known for code, gone in zip(normalized, missing)], dtype=bool
    )
    logger.info(
        f"Recover: {int(recoverable.sum())}/{len(units)} units have a zip code in the reference areas"
    )

    needed = zips[zips[POSTAL_CODE].isin(set(normalized[recoverable]))]
    by_zip = nearest_polygon_by_zip(needed, interior, config, progress)
    by_zip[POSTAL_CODE] = by_zip[POSTAL_CODE].astype(object)

    # canonical columns only until the caller's names are restored below
    placed = pd.DataFrame({
        UNIT_ROW: np.flatnonzero(recoverable),
        POSTAL_CODE: pd.Series(normalized[recoverable], dtype=object),
    }).merge(by_zip, on=POSTAL_CODE, how="left")
    matches = pd.DataFrame({
        unit_id: ids[placed[UNIT_ROW].to_numpy(dtype=np.intp)],
        polygon_id: placed[POLYGON_ID].map(polygon_lookup).to_numpy(),
        unit_zip: placed[POSTAL_CODE].to_numpy(),
        DISTANCE: placed[DISTANCE].astype(float).to_numpy(),
        MATCHED_BY_ZIP: np.ones(len(placed), dtype=bool),
    })

    missing_code = missing[~recoverable]
    unrecoverable = pd.DataFrame({
        unit_id: ids[~recoverable],
        unit_zip: provided[~recoverable],
        REASON: np.where(missing_code, "missing_postal_code", "postal_code_not_found"),
    })

    if len(matches) + len(unrecoverable) != len(units) or matches[polygon_id].isna().any():
        raise AssignmentError(
            f"Recover must place each of {len(units)} units exactly once "
            f"(matched={len(matches)}, unrecoverable={len(unrecoverable)})"
        )
    if len(unrecoverable):
        logger.warning(
            f"{len(unrecoverable)} units could not be recovered "
            f"({int(missing_code.sum())} without a usable zip code)"
        )
    logger.info(f"Recover finished in {time.time() - t0:.1f}s: {len(matches)} units matched by zip")
    return RecoveryResult(
        matches=matches,
        unrecoverable=unrecoverable,
        unit_id=unit_id,
        polygon_id=polygon_id,
        unit_zip=unit_zip,
    )
