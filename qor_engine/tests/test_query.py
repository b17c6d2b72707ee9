"""Tests for the Query stage and the Census geocoder client (HTTP mocked)."""

from unittest.mock import Mock, patch

import geopandas as gpd
import pandas as pd
import pytest
import requests
from shapely.geometry import box

from qor_engine import Config, GeocodingError, MissingColumnError, MissingInputError, SchemaError, query
from qor_engine.models import GeocodedAddress
from qor_engine.query import CensusGeocoder, Geocoder


class FakeGeocoder(Geocoder):
    """Batch finds only u1; the one-by-one pass finds u2 inside the region and u3 far outside it."""

    def __init__(self, batch_hits=None, single_hits=None):
        self.batch_hits = batch_hits or {}
        self.single_hits = single_hits or {}
        self.batch_sizes = []
        self.single_calls = []

    def geocode_batch(self, rows):
        self.batch_sizes.append(len(rows))
        return {uid: self.batch_hits.get(uid) for uid, *_ in rows}

    def geocode_one(self, street, city, state):
        self.single_calls.append(street)
        return self.single_hits.get(street)


@pytest.fixture
def units():
    return pd.DataFrame({
        "unit": ["u1", "u2", "u3", "u4"],
        "addr": ["1 Main St", "2 Oak Ave", "3 Pine Rd", "4 Elm Ct"],
        "city": ["Raleigh", "Durham", "Cary", "Apex"],
        "state": ["NC", "NC", "NC", "NC"],
        "postalcode": ["27601", "27701", "27511", "27502"],
        "party": ["D", "R", "U", "D"],
    })


@pytest.fixture
def region():
    return gpd.GeoDataFrame(geometry=[box(-80, 35, -78, 37)], crs="EPSG:4326")


@pytest.fixture
def fake():
    return FakeGeocoder(
        batch_hits={"u1": GeocodedAddress(lat=36.0, lon=-79.0)},
        single_hits={
            "2 Oak Ave": GeocodedAddress(lat=35.5, lon=-78.5),
            "3 Pine Rd": GeocodedAddress(lat=40.0, lon=-70.0),
        },
    )


class TestQuery:

    def _query(self, units, region, geocoder, **kwargs):
        return query(
            units, unit_id="unit", street="addr", region_boundary=region, year=2022,
            units_per_batch=2, sleep_time=0, geocoder=geocoder, **kwargs,
        )

    def test_located_and_unmatched(self, units, region, fake):
        matched, unmatched = self._query(units, region, fake)

        assert matched["unit"].tolist() == ["u1", "u2"]
        assert matched.crs.to_epsg() == 4326
        assert matched.geometry.iloc[0].x == pytest.approx(-79.0)
        assert matched.geometry.iloc[0].y == pytest.approx(36.0)
        assert unmatched["unit"].tolist() == ["u3", "u4"]

    def test_columns_are_reduced_and_zip_is_kept(self, units, region, fake):
        matched, unmatched = self._query(units, region, fake)

        assert list(unmatched.columns) == ["unit", "addr", "city", "state", "postalcode"]
        assert "party" not in matched.columns
        assert "postalcode" in matched.columns

    def test_batches_then_singles(self, units, region, fake):
        self._query(units, region, fake)

        assert fake.batch_sizes == [2, 2]
        assert fake.single_calls == ["2 Oak Ave", "3 Pine Rd", "4 Elm Ct"]

    def test_progress_callback(self, units, region, fake):
        calls = []
        self._query(units, region, fake, progress=lambda stage, done, total: calls.append((stage, done, total)))

        assert ("Batch geocoding", 4, 4) in calls
        assert ("Single geocoding", 3, 3) in calls

    def test_nothing_located(self, units, region):
        with pytest.raises(GeocodingError):
            self._query(units, region, FakeGeocoder())

    def test_year_is_required(self, units, region, fake):
        with pytest.raises(MissingInputError):
            query(units, unit_id="unit", street="addr", region_boundary=region, geocoder=fake)

    def test_region_is_required(self, units, fake):
        with pytest.raises(MissingInputError):
            query(units, unit_id="unit", street="addr", year=2022, geocoder=fake)

    def test_missing_address_column(self, units, region, fake):
        with pytest.raises(MissingColumnError):
            query(units, unit_id="unit", street="street", region_boundary=region, year=2022, geocoder=fake)

    def test_geocoder_details_are_kept(self, units, region):
        hit = GeocodedAddress(
            lat=36.0, lon=-79.0, matched_address="1 MAIN ST, RALEIGH, NC, 27601",
            match_type="Exact", block_geoid="371830520001001",
        )
        matched, unmatched = self._query(units, region, FakeGeocoder(batch_hits={"u1": hit}))

        row = matched.iloc[0]
        assert row["matched_address"] == "1 MAIN ST, RALEIGH, NC, 27601"
        assert row["match_type"] == "Exact"
        assert row["block_geoid"] == "371830520001001"
        assert "block_geoid" not in unmatched.columns

    def test_unit_column_named_like_geocoder_output(self, units, region, fake):
        units = units.rename(columns={"postalcode": "block_geoid"})
        with pytest.raises(SchemaError):
            self._query(units, region, fake, zip_id="block_geoid")


BATCH_RESPONSE = (
    '"u1","1 Main St, Raleigh, NC, ","Match","Exact","1 MAIN ST, RALEIGH, NC, 27601",'
    '"-78.638,35.779","636","L","37","183","052000","1001"\n'
    '"u2","2 Oak Ave, Durham, NC, ","No_Match"\n'
    '"u3","3 Pine Rd, Cary, NC, ","Tie"\n'
)


class TestCensusGeocoder:

    def setup_method(self):
        self.config = Config(batch_max_retries=3, single_max_tries=3, single_retry_wait=0)
        self.geocoder = CensusGeocoder(self.config, vintage="ACS2022_Current")

    def test_parse_batch_response(self):
        results = CensusGeocoder._parse_batch_response(BATCH_RESPONSE)

        hit = results["u1"]
        assert hit.lon == pytest.approx(-78.638)
        assert hit.lat == pytest.approx(35.779)
        assert hit.match_type == "Exact"
        assert hit.block_geoid == "371830520001001"
        assert results["u2"] is None
        assert results["u3"] is None

    @patch("qor_engine.query.requests.post")
    def test_geocode_batch_posts_vintage(self, mock_post):
        mock_post.return_value = Mock(text=BATCH_RESPONSE, raise_for_status=Mock())
        rows = [("u1", "1 Main St", "Raleigh", "NC"), ("u9", "9 Nowhere", "Cary", "NC")]

        results = self.geocoder.geocode_batch(rows)

        assert results["u1"].lat == pytest.approx(35.779)
        assert results["u9"] is None
        _, kwargs = mock_post.call_args
        assert kwargs["data"]["vintage"] == "ACS2022_Current"
        assert kwargs["data"]["benchmark"] == "Public_AR_Current"
        payload = kwargs["files"]["addressFile"][1]
        assert payload.splitlines()[0] == "u1,1 Main St,Raleigh,NC,"

    @patch("qor_engine.query.time.sleep")
    @patch("qor_engine.query.requests.post")
    def test_batch_retries_on_transport_error(self, mock_post, mock_sleep):
        ok = Mock(text=BATCH_RESPONSE, raise_for_status=Mock())
        mock_post.side_effect = [requests.ConnectionError("reset"), ok]

        results = self.geocoder.geocode_batch([("u1", "1 Main St", "Raleigh", "NC")])

        assert results["u1"] is not None
        assert mock_post.call_count == 2
        mock_sleep.assert_called_once_with(2)

    @patch("qor_engine.query.time.sleep")
    @patch("qor_engine.query.requests.post")
    def test_batch_gives_up(self, mock_post, mock_sleep):
        mock_post.side_effect = requests.ConnectionError("down")

        results = self.geocoder.geocode_batch([("u1", "1 Main St", "Raleigh", "NC")])

        assert results == {"u1": None}
        assert mock_post.call_count == 3

    @patch("qor_engine.query.requests.get")
    def test_geocode_one(self, mock_get):
        mock_get.return_value = Mock(
            raise_for_status=Mock(),
            json=Mock(return_value={"result": {"addressMatches": [{
                "matchedAddress": "2 OAK AVE, DURHAM, NC, 27701",
                "coordinates": {"x": -78.9, "y": 35.99},
            }]}}),
        )

        hit = self.geocoder.geocode_one("2 Oak Ave", "Durham", "NC")

        assert hit.lon == pytest.approx(-78.9)
        assert hit.lat == pytest.approx(35.99)
        assert hit.matched_address.startswith("2 OAK AVE")
        assert mock_get.call_args[1]["params"]["vintage"] == "ACS2022_Current"

    @patch("qor_engine.query.requests.get")
    def test_geocode_one_no_match(self, mock_get):
        mock_get.return_value = Mock(
            raise_for_status=Mock(),
            json=Mock(return_value={"result": {"addressMatches": []}}),
        )
        assert self.geocoder.geocode_one("9 Nowhere", "Cary", "NC") is None

    @patch("qor_engine.query.time.sleep")
    @patch("qor_engine.query.requests.get")
    def test_geocode_one_bounded_retries(self, mock_get, mock_sleep):
        mock_get.side_effect = requests.Timeout("slow")

        assert self.geocoder.geocode_one("2 Oak Ave", "Durham", "NC") is None
        assert mock_get.call_count == 3
        assert mock_sleep.call_count == 2
