"""Geometry adapter: validity repair, CRS alignment and per-polygon reference points."""

import logging

import geopandas as gpd
from shapely.ops import unary_union
from shapely.validation import make_valid

from .exceptions import InvalidGeometryError, MissingInputError

logger = logging.getLogger(__name__)

_POLYGONAL = ("Polygon", "MultiPolygon")


def _polygonal_parts(geom) -> list:
    if geom is None or geom.is_empty:
        return []
    if geom.geom_type == "Polygon":
        return [geom]
    if geom.geom_type in ("MultiPolygon", "GeometryCollection"):
        parts = []
        for part in geom.geoms:
            parts.extend(_polygonal_parts(part))
        return parts
    return []


def polygonal_part(geom):
    """
    Keep only the area of a (repaired) geometry.

    make_valid() can return a GeometryCollection mixing polygons with the
    collapsed lines/points of a bow-tie ring; only the polygons are kept.
    Returns None when nothing polygonal is left.
    """
    if geom is not None and not geom.is_empty and geom.geom_type in _POLYGONAL:
        return geom
    parts = _polygonal_parts(geom)
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return unary_union(parts)


def repair_polygons(gdf: gpd.GeoDataFrame, id_col: str, label: str = "polygons") -> gpd.GeoDataFrame:
    """
    Return a copy of ``gdf`` whose geometries are all valid Polygons/MultiPolygons.

    Raises:
        InvalidGeometryError: a row has no geometry, or its geometry has no
            polygonal area left after repair.
    """
    gdf = gdf.copy()
    geom_col = gdf.geometry.name

    missing = gdf.geometry.isna() | gdf.geometry.is_empty
    if missing.any():
        ids = gdf.loc[missing, id_col].tolist()
        raise InvalidGeometryError(f"{label}: {len(ids)} rows have no geometry: {ids[:10]}", ids=ids)

    invalid = ~gdf.geometry.is_valid
    if invalid.any():
        logger.info(f"{label}: fixing {invalid.sum()} invalid geometries")
        gdf.loc[invalid, geom_col] = gdf.loc[invalid, geom_col].apply(make_valid)

    repaired = gpd.GeoSeries(
        [polygonal_part(g) for g in gdf.geometry], index=gdf.index, crs=gdf.crs
    )
    bad = repaired.isna() | ~repaired.is_valid
    if bad.any():
        ids = gdf.loc[bad, id_col].tolist()
        raise InvalidGeometryError(
            f"{label}: {len(ids)} geometries cannot be repaired into valid polygons: {ids[:10]}",
            ids=ids,
        )
    gdf[geom_col] = repaired
    return gdf


def validate_points(gdf: gpd.GeoDataFrame, id_col: str, label: str = "points") -> None:
    """Every subject must be located by a single non-empty point."""
    geoms = gdf.geometry
    bad = geoms.isna() | geoms.is_empty | (geoms.geom_type != "Point")
    if bad.any():
        ids = gdf.loc[bad, id_col].tolist()
        raise InvalidGeometryError(
            f"{label}: {len(ids)} rows are not located by a single point: {ids[:10]}", ids=ids
        )


def align_crs(gdf: gpd.GeoDataFrame, target_crs, label: str) -> gpd.GeoDataFrame:
    """Reproject ``gdf`` into the CRS of record. A layer without a CRS is assumed to be in it."""
    if target_crs is None:
        return gdf
    if gdf.crs is None:
        logger.warning(f"{label} have no CRS; assuming {target_crs}")
        return gdf.set_crs(target_crs)
    if gdf.crs.equals(target_crs):
        return gdf
    logger.debug(f"{label}: reprojecting {gdf.crs.to_string()} -> {target_crs}")
    return gdf.to_crs(target_crs)


def interior_points(polygons: gpd.GeoDataFrame, id_col: str) -> gpd.GeoDataFrame:
    """One point per polygon that is guaranteed to lie inside it (unlike a centroid)."""
    return gpd.GeoDataFrame(
        {id_col: polygons[id_col].values},
        geometry=polygons.geometry.representative_point().values,
        crs=polygons.crs,
    )


def centroids(areas: gpd.GeoDataFrame, id_col: str) -> gpd.GeoDataFrame:
    """
    Ordinary geometric centroid per area.

    Centroids of a geographic (lon/lat) layer are taken in its local UTM
    projection and brought back, since planar centroids of degrees are skewed.
    """
    if areas.crs is not None and areas.crs.is_geographic and len(areas):
        local_crs = areas.estimate_utm_crs()
        points = areas.to_crs(local_crs).geometry.centroid.to_crs(areas.crs)
    else:
        points = areas.geometry.centroid
    return gpd.GeoDataFrame(
        {id_col: areas[id_col].values},
        geometry=points.values,
        crs=areas.crs,
    )


def region_geometry(region_boundary: gpd.GeoDataFrame, crs):
    """Single repaired geometry for a region layer, e.g. a state stored as separate counties."""
    boundary = align_crs(region_boundary, crs, "region boundary")
    parts = [
        polygonal_part(make_valid(g))
        for g in boundary.geometry
        if g is not None and not g.is_empty
    ]
    parts = [p for p in parts if p is not None]
    if not parts:
        raise MissingInputError("The region boundary dataset has no polygon geometry.")
    return unary_union(parts)
