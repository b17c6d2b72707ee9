"""Dense point-to-point distance tables (subjects x polygon reference points)."""

import logging
from typing import Iterator

import geopandas as gpd
import numpy as np
import pandas as pd
from pyproj import CRS, Geod

from .geometry import align_crs

logger = logging.getLogger(__name__)

DISTANCE = "distance"


def pairwise_distances(sx, sy, tx, ty, crs=None) -> np.ndarray:
    """
    (n_sources, n_targets) matrix of distances.

    Geographic CRS: geodesic metres on the CRS's ellipsoid.
    Projected CRS (or none): planar distance in the CRS's linear unit.
    """
    sx, sy = np.asarray(sx, dtype=float), np.asarray(sy, dtype=float)
    tx, ty = np.asarray(tx, dtype=float), np.asarray(ty, dtype=float)
    n, m = len(sx), len(tx)

    if crs is not None:
        crs = CRS.from_user_input(crs)
        if crs.is_geographic:
            geod = crs.get_geod() or Geod(ellps="WGS84")
            _, _, dist = geod.inv(
                np.repeat(sx, m), np.repeat(sy, m), np.tile(tx, n), np.tile(ty, n)
            )
            return np.asarray(dist, dtype=float).reshape(n, m)

    return np.hypot(sx[:, None] - tx[None, :], sy[:, None] - ty[None, :])


def distance_table(
    sources: gpd.GeoDataFrame,
    targets: gpd.GeoDataFrame,
    source_key: str = "point_id",
    target_key: str = "polygon_id",
) -> pd.DataFrame:
    """
    Long-form table with one row per (source, target) pair and a plain float
    ``distance`` column. Used for subject points vs polygon interior points in
    Overlay and for zip centroids vs polygon interior points in Recover.
    """
    n, m = len(sources), len(targets)
    if n == 0 or m == 0:
        return pd.DataFrame({
            source_key: pd.Series(dtype=object),
            target_key: pd.Series(dtype=object),
            DISTANCE: pd.Series(dtype=float),
        })

    targets = align_crs(targets, sources.crs, "distance targets")
    dist = pairwise_distances(
        sources.geometry.x.to_numpy(),
        sources.geometry.y.to_numpy(),
        targets.geometry.x.to_numpy(),
        targets.geometry.y.to_numpy(),
        crs=sources.crs,
    )
    return pd.DataFrame({
        source_key: np.repeat(sources[source_key].to_numpy(), m),
        target_key: np.tile(targets[target_key].to_numpy(), n),
        DISTANCE: dist.ravel(),
    })


def iter_distance_tables(
    sources: gpd.GeoDataFrame,
    targets: gpd.GeoDataFrame,
    chunk_size: int,
    source_key: str = "point_id",
    target_key: str = "polygon_id",
) -> Iterator[pd.DataFrame]:
    """
    Yield the distance table ``chunk_size`` sources at a time, so at most
    chunk_size x len(targets) distances are held in memory.
    """
    chunk_size = max(int(chunk_size), 1)
    for start in range(0, len(sources), chunk_size):
        chunk = sources.iloc[start:start + chunk_size]
        yield distance_table(chunk, targets, source_key, target_key)
