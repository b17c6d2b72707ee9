"""Tests for the Recover operation and zip code normalization."""

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box

from qor_engine import (
    ConfigurationError,
    DuplicateIdentifierError,
    MissingColumnError,
    MissingInputError,
    RegionFilter,
    normalize_postal_code,
    recover,
)

UTM = "EPSG:32617"


@pytest.mark.parametrize("value,expected", [
    ("27601", "27601"),
    ("27601-1234", "27601"),
    ("27601 1234", "27601"),
    ("276011234", "27601"),
    ("  27601 ", "27601"),
    (27601, "27601"),
    (27601.0, "27601"),
    ("27601.0", "27601"),
    (2760, "02760"),
    ("2760", "02760"),
    ("02760", "02760"),
    (None, None),
    (float("nan"), None),
    ("", None),
    ("ABCDE", None),
    ("1234567890", None),
])
def test_normalize_postal_code(value, expected):
    assert normalize_postal_code(value) == expected


class TestRecover:

    def _recover(self, units, districts, zip_areas, **kwargs):
        return recover(
            units, districts, zip_areas,
            unit_id="unit", unit_zip="postalcode", polygon_id="district", zip_id="zcta",
            **kwargs,
        )

    def test_units_placed_by_zip_centroid(self, unmatched_units, districts, zip_areas):
        matches, _ = self._recover(unmatched_units, districts, zip_areas)

        assert list(matches.columns) == ["unit", "district", "postalcode", "distance", "matched_by_zip"]
        placed = matches.set_index("unit")
        assert placed.loc["u1", "district"] == "D1"
        assert placed.loc["u1", "postalcode"] == "27601"
        assert placed.loc["u2", "district"] == "D3"
        assert placed.loc["u2", "postalcode"] == "02760"
        assert placed["distance"].tolist() == [pytest.approx(0.0), pytest.approx(0.0)]
        assert placed["matched_by_zip"].all()

    def test_unrecoverable_reasons(self, unmatched_units, districts, zip_areas):
        _, unrecoverable = self._recover(unmatched_units, districts, zip_areas)

        reasons = dict(zip(unrecoverable["unit"], unrecoverable["reason"]))
        assert reasons == {"u3": "missing_postal_code", "u4": "postal_code_not_found"}
        # the zip code is reported as provided
        assert unrecoverable.set_index("unit").loc["u4", "postalcode"] == "99999"

    def test_every_unit_lands_in_exactly_one_output(self, unmatched_units, districts, zip_areas):
        matches, unrecoverable = self._recover(unmatched_units, districts, zip_areas)

        placed = set(matches["unit"])
        lost = set(unrecoverable["unit"])
        assert placed.isdisjoint(lost)
        assert placed | lost == set(unmatched_units["unit"])

    def test_region_boundary_limits_zip_areas(self, unmatched_units, districts, zip_areas):
        region = gpd.GeoDataFrame(geometry=[box(-1, -1, 12, 12)], crs=UTM)
        matches, unrecoverable = self._recover(
            unmatched_units, districts, zip_areas, region_boundary=region,
        )
        assert matches["unit"].tolist() == ["u1"]
        assert set(unrecoverable["unit"]) == {"u2", "u3", "u4"}

    def test_zip_areas_in_another_crs(self, unmatched_units, districts, zip_areas):
        matches, _ = self._recover(unmatched_units, districts, zip_areas.to_crs("EPSG:4326"))
        assert dict(zip(matches["unit"], matches["district"])) == {"u1": "D1", "u2": "D3"}

    def test_records(self, unmatched_units, districts, zip_areas):
        result = self._recover(unmatched_units, districts, zip_areas)

        records = result.records()
        assert [r.unit_id for r in records] == ["u1", "u2"]
        lost = {r.unit_id: r for r in result.unrecoverable_records()}
        assert lost["u3"].postal_code is None
        assert lost["u3"].reason == "missing_postal_code"

    def test_no_units(self, districts, zip_areas):
        units = pd.DataFrame({"unit": [], "postalcode": []})
        matches, unrecoverable = self._recover(units, districts, zip_areas)
        assert len(matches) == 0
        assert len(unrecoverable) == 0

    def test_missing_zip_codes_from_string_column(self, districts, zip_areas):
        units = pd.DataFrame({
            "unit": ["u1", "u3", "u5"],
            "postalcode": pd.Series(["27601", None, np.nan], dtype="string"),
        })
        matches, unrecoverable = self._recover(units, districts, zip_areas)

        assert matches["unit"].tolist() == ["u1"]
        assert dict(zip(unrecoverable["unit"], unrecoverable["reason"])) == {
            "u3": "missing_postal_code", "u5": "missing_postal_code",
        }

    def test_no_units_with_numeric_zip_column(self, districts, zip_areas):
        units = pd.DataFrame({
            "unit": pd.Series([], dtype=object),
            "postalcode": pd.Series([], dtype=float),
        })
        matches, unrecoverable = self._recover(units, districts, zip_areas)
        assert list(matches.columns) == ["unit", "district", "postalcode", "distance", "matched_by_zip"]
        assert len(matches) == 0
        assert len(unrecoverable) == 0

    @pytest.mark.parametrize("name", ["postal_code", "polygon_id", "unit_row"])
    def test_unit_id_may_share_an_internal_column_name(self, name, unmatched_units, districts, zip_areas):
        units = unmatched_units.rename(columns={"unit": name})
        matches, unrecoverable = recover(
            units, districts, zip_areas,
            unit_id=name, unit_zip="postalcode", polygon_id="district", zip_id="zcta",
        )

        assert matches[name].tolist() == ["u1", "u2"]
        assert matches["district"].tolist() == ["D1", "D3"]
        assert matches["postalcode"].tolist() == ["27601", "02760"]
        assert sorted(unrecoverable[name]) == ["u3", "u4"]


class TestRecoverInputErrors:

    def test_missing_zip_areas(self, unmatched_units, districts):
        with pytest.raises(MissingInputError):
            recover(unmatched_units, districts, None, unit_id="unit", polygon_id="district")

    def test_missing_zip_column(self, unmatched_units, districts, zip_areas):
        with pytest.raises(MissingColumnError):
            recover(unmatched_units, districts, zip_areas,
                    unit_id="unit", unit_zip="zip", polygon_id="district", zip_id="zcta")

    def test_duplicate_unit_ids(self, unmatched_units, districts, zip_areas):
        units = unmatched_units.assign(unit=["u1", "u1", "u3", "u4"])
        with pytest.raises(DuplicateIdentifierError):
            recover(units, districts, zip_areas, unit_id="unit", polygon_id="district", zip_id="zcta")

    def test_bad_region_code_reported_before_geometry_repair(self, unmatched_units, districts):
        zip_areas = gpd.GeoDataFrame(
            {"zcta": ["27601", "02760"]},
            geometry=[box(0, 0, 10, 10), None],
            crs=UTM,
        )
        with pytest.raises(ConfigurationError):
            recover(unmatched_units, districts, zip_areas,
                    unit_id="unit", polygon_id="district", zip_id="zcta",
                    region_filter=RegionFilter("99"))
