"""Overlay: match subject points (e.g. voters) to polygons (e.g. school districts)."""

import logging
import time
from typing import Iterator, Optional

import geopandas as gpd
import pandas as pd

from .assignment import assign, report_buckets
from .config import Config
from .distance import DISTANCE, iter_distance_tables
from .exceptions import SchemaError
from .geometry import align_crs, interior_points, repair_polygons, validate_points
from .inputs import (
    apply_region_filter,
    require_columns,
    require_frame,
    require_unique,
    resolve_region_filter,
    standardize,
)
from .models import Classification, FieldMapping, OverlayResult, RegionFilter
from .progress import Progress, ProgressCallback
from .spatial_index import POINT_ID, POLYGON_ID, SpatialIndex

logger = logging.getLogger(__name__)


def check_output_names(*names: str) -> None:
    """Caller id columns become output columns next to ``distance``; they must not collide."""
    seen = set()
    for name in names + (DISTANCE,):
        if name in seen:
            raise SchemaError(
                f"Id column names must differ from each other and from '{DISTANCE}' (got {list(names)})"
            )
        seen.add(name)


def prepare_polygons(
    polygons: gpd.GeoDataFrame,
    mapping: FieldMapping,
    target_crs,
    region_filter: Optional[RegionFilter] = None,
    national_polygons: bool = False,
):
    """Region-filter, standardize, repair and reproject polygons; add their interior points."""
    polygons = apply_region_filter(polygons, region_filter, national_polygons)
    polys, lookup = standardize(polygons, mapping, POLYGON_ID, "polygons")
    polys = repair_polygons(polys, POLYGON_ID)
    polys = align_crs(polys, target_crs, "polygons")
    return polys, interior_points(polys, POLYGON_ID), lookup


def _tracked(tables: Iterator[pd.DataFrame], progress: Progress, chunk_size: int):
    for table in tables:
        yield table
        progress.advance(min(chunk_size, progress.total - progress.done))


def match_points(
    points: gpd.GeoDataFrame,
    polygons: gpd.GeoDataFrame,
    interior: gpd.GeoDataFrame,
    config: Config,
    progress: Optional[ProgressCallback] = None,
):
    """
    Core of Overlay on standardized, CRS-aligned inputs.

    Returns (matches with canonical columns, classification).
    """
    classification: Classification = SpatialIndex(polygons).classify(points)
    report_buckets(classification)

    # distances only for points not settled by containment
    single = set(classification.single)
    to_resolve = points[~points[POINT_ID].isin(single)]
    tracker = Progress("Point-polygon distance resolution", len(to_resolve),
                       every=config.progress_every, callback=progress)
    tables = iter_distance_tables(to_resolve, interior, config.distance_chunk_size)

    t0 = time.time()
    matches = assign(
        classification,
        _tracked(tables, tracker, config.distance_chunk_size),
        point_order=points[POINT_ID].tolist(),
    )
    logger.info(f"Resolved {len(to_resolve)} points by distance in {time.time() - t0:.1f}s")
    return matches, classification


def overlay(
    points: Optional[gpd.GeoDataFrame] = None,
    polygons: Optional[gpd.GeoDataFrame] = None,
    point_id: str = "point_id",
    polygon_id: str = "polygon_id",
    region_filter: Optional[RegionFilter] = None,
    national_polygons: bool = False,
    config: Optional[Config] = None,
    progress: Optional[ProgressCallback] = None,
    point_geometry: Optional[str] = None,
    polygon_geometry: Optional[str] = None,
) -> OverlayResult:
    """
    Assign exactly one polygon to every point.

    A point inside one polygon gets that polygon (no distance). A point in
    several polygons (e.g. on a shared border) gets whichever of those has
    the nearest interior point. A point in none gets the polygon with the
    nearest interior point overall. Distances are in the points' CRS unit,
    metres for lon/lat data.

    Use one time period per call: ids must be unique within each input.

    Args:
        points: GeoDataFrame of subject points; its CRS is the CRS of record.
        polygons: GeoDataFrame of boundaries (reprojected to the points' CRS).
        point_id / polygon_id: unique id columns; kept as output column names.
        region_filter: restrict a national polygon layer to one region first.
        national_polygons: polygons are a national layer (warn when unfiltered).
        config: pipeline configuration.
        progress: optional ``callback(stage, done, total)``.
        point_geometry / polygon_geometry: geometry columns, if not the active ones.

    Returns:
        OverlayResult with ``matches`` = [point_id, polygon_id, distance] in
        input point order, and the bucket ``classification``.
    """
    config = config or Config()
    t0 = time.time()

    # All input checks before any geometry work
    require_frame(points, "points")
    require_frame(polygons, "polygons", allow_empty=False)
    require_columns(points, [point_id], "points")
    require_columns(polygons, [polygon_id], "polygons")
    check_output_names(point_id, polygon_id)
    require_unique(points, point_id, "points")
    require_unique(polygons, polygon_id, "polygons")
    resolve_region_filter(polygons, region_filter)

    pts, point_lookup = standardize(points, FieldMapping(point_id, point_geometry), POINT_ID, "points")
    validate_points(pts, POINT_ID)
    if pts.crs is None:
        logger.warning(f"Points have no CRS; assuming {config.default_crs}")
        pts = pts.set_crs(config.default_crs)

    polys, interior, polygon_lookup = prepare_polygons(
        polygons, FieldMapping(polygon_id, polygon_geometry), pts.crs,
        region_filter, national_polygons,
    )
    logger.info(f"Overlay: {len(pts)} points against {len(polys)} polygons")

    matches, classification = match_points(pts, polys, interior, config, progress)

    result = pd.DataFrame({
        point_id: matches[POINT_ID].map(point_lookup).to_numpy(),
        polygon_id: matches[POLYGON_ID].map(polygon_lookup).to_numpy(),
        DISTANCE: matches[DISTANCE].to_numpy(),
    })
    logger.info(f"Overlay finished in {time.time() - t0:.1f}s: {len(result)} points matched")
    return OverlayResult(
        matches=result,
        classification=classification,
        point_id=point_id,
        polygon_id=polygon_id,
    )
