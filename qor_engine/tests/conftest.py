"""Shared synthetic layers. Coordinates are metres in a UTM zone so distances are easy to check."""

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import Point, box

UTM = "EPSG:32617"


@pytest.fixture
def districts():
    """
    D1 and D2 overlap on x in [8, 10]; D3 stands apart.
    Interior points: D1 (5, 5), D2 (14, 5), D3 (35, 5).
    """
    return gpd.GeoDataFrame(
        {
            "district": ["D1", "D2", "D3"],
            "STATEFP": ["37", "37", "45"],
        },
        geometry=[box(0, 0, 10, 10), box(8, 0, 20, 10), box(30, 0, 40, 10)],
        crs=UTM,
    )


@pytest.fixture
def voters():
    """P1 inside D1 only, P2 inside D1 and D2 (nearer D2's interior), P3 in no district."""
    return gpd.GeoDataFrame(
        {"voter": ["P1", "P2", "P3"]},
        geometry=[Point(2, 2), Point(9.9, 5), Point(25, 5)],
        crs=UTM,
    )


@pytest.fixture
def zip_areas():
    return gpd.GeoDataFrame(
        {"zcta": ["27601", "02760"]},
        geometry=[box(0, 0, 10, 10), box(30, 0, 40, 10)],
        crs=UTM,
    )


@pytest.fixture
def unmatched_units():
    return pd.DataFrame({
        "unit": ["u1", "u2", "u3", "u4"],
        "postalcode": ["27601-1234", 2760, None, "99999"],
    })
