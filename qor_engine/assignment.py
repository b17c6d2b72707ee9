"""Assignment of exactly one polygon per point from the classification and distance tables."""

import logging
from typing import Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from .distance import DISTANCE
from .exceptions import AssignmentError
from .models import Classification
from .spatial_index import POINT_ID, POLYGON_ID

logger = logging.getLogger(__name__)

_PREVIEW = 20


def nearest(table: pd.DataFrame, key: str = POINT_ID, target: str = POLYGON_ID) -> pd.DataFrame:
    """
    Minimum-distance row per ``key``.

    Ties at the minimum go to the lexicographically lowest ``target`` id, so
    the result never depends on row order.
    """
    if table.empty:
        return table.loc[:, [key, target, DISTANCE]].reset_index(drop=True)
    ordered = table.sort_values([key, DISTANCE, target], kind="mergesort")
    best = ordered.drop_duplicates(subset=key, keep="first")
    return best.loc[:, [key, target, DISTANCE]].reset_index(drop=True)


def direct_matches(classification: Classification) -> pd.DataFrame:
    """Points inside exactly one polygon take it directly, with no distance."""
    pairs = classification.pairs
    single = pairs[pairs[POINT_ID].isin(set(classification.single))]
    return pd.DataFrame({
        POINT_ID: single[POINT_ID].to_numpy(),
        POLYGON_ID: single[POLYGON_ID].to_numpy(),
        DISTANCE: np.full(len(single), np.nan),
    })


def resolve(table: pd.DataFrame, classification: Classification) -> pd.DataFrame:
    """
    Nearest polygon for the points of one distance table.

    A point in several polygons is compared only against those polygons, so a
    nearer polygon it does not touch can never win. A point in none is
    compared against all of them.
    """
    multiple = set(classification.multiple)
    is_multi = table[POINT_ID].isin(multiple)
    if is_multi.any():
        pairs = classification.pairs
        candidates = pairs[pairs[POINT_ID].isin(multiple)]
        restricted = table[is_multi].merge(candidates, on=[POINT_ID, POLYGON_ID], how="inner")
        table = pd.concat([table[~is_multi], restricted], ignore_index=True)
    return nearest(table)


def report_buckets(classification: Classification) -> None:
    """Log which points needed distance resolution. A report only, nothing branches on it."""
    for label, ids in (("multiple polygons", classification.multiple), ("no polygons", classification.none)):
        if not ids:
            continue
        preview = ", ".join(str(i) for i in ids[:_PREVIEW])
        more = f" (+{len(ids) - _PREVIEW} more)" if len(ids) > _PREVIEW else ""
        logger.info(f"{len(ids)} point_ids were in {label}: {preview}{more}")
        logger.debug(f"All point_ids in {label}: {ids}")


def assign(
    classification: Classification,
    tables: Union[pd.DataFrame, Iterable[pd.DataFrame], None] = None,
    point_order: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Final one-to-one point -> polygon matches as ``[point_id, polygon_id, distance]``.

    Args:
        classification: bucket partition and intersection pairs.
        tables: distance table(s) covering every point in the ``none`` and
            ``multiple`` buckets; an iterable of chunks is consumed one at a time.
        point_order: output row order (defaults to single, multiple, none).

    Raises:
        AssignmentError: a point ended up with no polygon or more than one.
    """
    if isinstance(tables, pd.DataFrame):
        tables = [tables]
    frames = [direct_matches(classification)]
    for table in tables or []:
        frames.append(resolve(table, classification))
    matches = pd.concat(frames, ignore_index=True)

    if point_order is None:
        point_order = list(classification.single) + list(classification.multiple) + list(classification.none)
    if len(matches) != len(point_order) or matches[POINT_ID].duplicated().any():
        raise AssignmentError(
            f"Expected one match per point ({len(point_order)}), got {len(matches)} rows"
        )
    unmatched = set(point_order) - set(matches[POINT_ID])
    if unmatched:
        raise AssignmentError(f"{len(unmatched)} points received no polygon: {sorted(unmatched)[:10]}")

    position = pd.Series(range(len(point_order)), index=point_order)
    matches = matches.assign(_order=matches[POINT_ID].map(position).to_numpy())
    matches = matches.sort_values("_order").drop(columns="_order").reset_index(drop=True)
    matches[DISTANCE] = matches[DISTANCE].astype(float)
    return matches
