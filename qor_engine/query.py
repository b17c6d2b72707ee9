"""Query: geocode unit addresses to lon/lat points with the US Census geocoder."""

import csv
import io
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import geopandas as gpd
import pandas as pd
import requests

from .config import Config
from .exceptions import GeocodingError, MissingInputError, SchemaError
from .geometry import region_geometry
from .inputs import id_strings, require_columns, require_frame, require_unique
from .models import GeocodedAddress, QueryResult
from .progress import Progress, ProgressCallback

logger = logging.getLogger(__name__)

OUTPUT_CRS = "EPSG:4326"

# match details carried onto every located unit
GEOCODE_COLUMNS = ("matched_address", "match_type", "block_geoid")

# (unit id, street, city, state)
AddressRow = Tuple[str, str, str, str]


def _parse_batch_row(row: List[str]) -> Optional[GeocodedAddress]:
    """
    One row of the geographies batch response:
    id, input address, Match/No_Match/Tie, Exact/Non_Exact, matched address,
    "lon,lat", TIGER line id, side, state, county, tract, block.
    """
    if row[2] != "Match" or len(row) < 6 or "," not in row[5]:
        return None
    lon, lat = row[5].split(",", 1)
    try:
        point = (float(lon), float(lat))
    except ValueError:
        logger.warning(f"Unreadable coordinates '{row[5]}' for unit {row[0]}")
        return None
    fips = row[8:12]
    return GeocodedAddress(
        lat=point[1],
        lon=point[0],
        matched_address=row[4],
        match_type=row[3],
        block_geoid="".join(fips) if len(fips) == 4 and all(fips) else "",
    )


class Geocoder(ABC):
    @abstractmethod
    def geocode_batch(self, rows: List[AddressRow]) -> Dict[str, Optional[GeocodedAddress]]:
        """Geocode many addresses; unit id -> location, or None when not found."""
        ...

    @abstractmethod
    def geocode_one(self, street: str, city: str, state: str) -> Optional[GeocodedAddress]:
        """Geocode a single address."""
        ...


class CensusGeocoder(Geocoder):
    """Free US Census Bureau geocoder. Batch endpoint first, one-address endpoint for the misses."""

    def __init__(self, config: Optional[Config] = None, vintage: str = "Current_Current"):
        self.config = config or Config()
        self.vintage = vintage

    def geocode_batch(self, rows: List[AddressRow]) -> Dict[str, Optional[GeocodedAddress]]:
        # zip left blank: the matched address carries the current one
        buffer = io.StringIO()
        csv.writer(buffer).writerows([uid, street, city, state, ""] for uid, street, city, state in rows)
        located = self._post_batch(buffer.getvalue(), len(rows))
        return {uid: located.get(uid) for uid, *_ in rows}

    def _post_batch(self, payload: str, n_rows: int) -> Dict[str, Optional[GeocodedAddress]]:
        """POST one batch file; transport errors are retried with exponential backoff."""
        form = {"benchmark": self.config.benchmark, "vintage": self.vintage}
        for attempt in range(1, self.config.batch_max_retries + 1):
            t0 = time.time()
            try:
                resp = requests.post(
                    self.config.batch_url,
                    files={"addressFile": ("units.csv", payload, "text/csv")},
                    data=form,
                    timeout=self.config.batch_timeout,
                )
                resp.raise_for_status()
            except requests.RequestException as e:
                if attempt == self.config.batch_max_retries:
                    logger.error(f"Giving up on a batch of {n_rows} units after {attempt} attempts: {e}")
                    break
                backoff = 2 ** attempt
                logger.warning(f"Batch of {n_rows} units, attempt {attempt} failed ({e}); retrying in {backoff}s")
                time.sleep(backoff)
                continue
            logger.info(f"Census answered a batch of {n_rows} units in {time.time() - t0:.1f}s")
            return self._parse_batch_response(resp.text)
        return {}

    @staticmethod
    def _parse_batch_response(response_text: str) -> Dict[str, Optional[GeocodedAddress]]:
        """Unit id -> location for every row of the geographies batch CSV."""
        located: Dict[str, Optional[GeocodedAddress]] = {}
        for row in csv.reader(io.StringIO(response_text)):
            if len(row) >= 3:
                located[row[0]] = _parse_batch_row(row)
        return located

    def geocode_one(self, street: str, city: str, state: str) -> Optional[GeocodedAddress]:
        """One address, retried on connection errors up to ``single_max_tries`` times."""
        params = {
            "street": street,
            "city": city,
            "state": state,
            "benchmark": self.config.benchmark,
            "vintage": self.vintage,
            "format": "json",
        }
        for attempt in range(1, self.config.single_max_tries + 1):
            try:
                resp = requests.get(self.config.single_url, params=params, timeout=self.config.single_timeout)
                resp.raise_for_status()
                data = resp.json()
            except requests.RequestException as e:
                logger.warning(f"Single geocode attempt {attempt} failed for '{street}, {city}': {e}")
                if attempt < self.config.single_max_tries:
                    time.sleep(self.config.single_retry_wait)
                continue
            except ValueError as e:
                logger.error(f"Census geocoder parse error for '{street}, {city}': {e}")
                return None

            matches = data.get("result", {}).get("addressMatches", [])
            if not matches:
                logger.debug(f"Census geocoder: no match for '{street}, {city}, {state}'")
                return None
            best = matches[0]
            coords = best.get("coordinates", {})
            if coords.get("x") is None or coords.get("y") is None:
                return None
            return GeocodedAddress(
                lat=float(coords.get("y")),
                lon=float(coords.get("x")),
                matched_address=best.get("matchedAddress", ""),
                match_type="Exact" if best.get("tigerLine") else "",
            )

        logger.error(f"Giving up on '{street}, {city}, {state}' after {self.config.single_max_tries} attempts")
        return None


def _text(value) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    return str(value).strip()


def query(
    units: Optional[pd.DataFrame] = None,
    unit_id: str = "unit_id",
    street: str = "street",
    city: str = "city",
    state: str = "state",
    region_boundary: Optional[gpd.GeoDataFrame] = None,
    year: Optional[int] = None,
    units_per_batch: Optional[int] = None,
    sleep_time: Optional[float] = None,
    zip_id: Optional[str] = "postalcode",
    geocoder: Optional[Geocoder] = None,
    config: Optional[Config] = None,
    progress: Optional[ProgressCallback] = None,
) -> QueryResult:
    """
    Geocode every unit's street/city/state to a lon/lat point.

    Units are sent to the Census batch endpoint ``units_per_batch`` at a
    time; batch misses are retried one address at a time. Located points
    outside ``region_boundary`` are treated as misses. Columns keep the
    caller's names; ``zip_id`` is carried through (if present) for Recover.

    Args:
        units: DataFrame with unique unit ids and address columns.
        region_boundary: GeoDataFrame of the region the units live in.
        year: year of the address data; picks the closest Census vintage.
        geocoder: alternative Geocoder (defaults to CensusGeocoder).

    Returns:
        QueryResult(matched=EPSG:4326 GeoDataFrame with the geocoder's
        matched_address, match_type and block_geoid, unmatched=DataFrame).

    Raises:
        GeocodingError: no unit could be located at all.
    """
    config = config or Config()
    t0 = time.time()

    require_frame(units, "units", spatial=False)
    require_frame(region_boundary, "region boundary", allow_empty=False)
    if year is None:
        raise MissingInputError("No year provided; it selects the closest Census geocoding vintage.")
    require_columns(units, [unit_id, street, city, state], "units")
    require_unique(units, unit_id, "units")

    keep = [unit_id, street, city, state]
    if zip_id and zip_id in units.columns:
        keep.append(zip_id)
    else:
        logger.warning("No zip code column; units that fail geocoding cannot be recovered by zip code")
    clash = [c for c in keep if c in GEOCODE_COLUMNS]
    if clash:
        raise SchemaError(f"Unit columns {clash} collide with the geocoder output columns {list(GEOCODE_COLUMNS)}")
    units = units.loc[:, keep].reset_index(drop=True)

    vintage = config.vintage_for_year(year)
    geocoder = geocoder or CensusGeocoder(config, vintage=vintage)
    per_batch = max(int(units_per_batch or config.units_per_batch), 1)
    pause = config.sleep_time if sleep_time is None else sleep_time

    uids = id_strings(units[unit_id]).tolist()
    rows = [
        (uid, _text(s), _text(c), _text(st))
        for uid, s, c, st in zip(uids, units[street], units[city], units[state])
    ]
    by_uid = {row[0]: row for row in rows}

    # Pass 1: batches
    located: Dict[str, Optional[GeocodedAddress]] = {}
    n_batches = (len(rows) + per_batch - 1) // per_batch
    for num, start in enumerate(range(0, len(rows), per_batch), 1):
        logger.info(f"Now batch-geocoding unit group {num} out of {n_batches} (vintage {vintage})")
        located.update(geocoder.geocode_batch(rows[start:start + per_batch]))
        if progress is not None:
            progress("Batch geocoding", min(start + per_batch, len(rows)), len(rows))
        if pause > 0 and num < n_batches:
            time.sleep(pause)

    # Pass 2: one at a time for the batch misses
    failed = [uid for uid in uids if located.get(uid) is None]
    if failed:
        logger.info(f"{len(failed)} units failed batch geocoding; retrying one at a time")
        tracker = Progress("Single geocoding", len(failed), every=100, callback=progress)
        for uid in failed:
            _, s, c, st = by_uid[uid]
            located[uid] = geocoder.geocode_one(s, c, st)
            tracker.advance()

    found = [located.get(uid) is not None for uid in uids]
    if not any(found):
        raise GeocodingError(
            "No units were successfully geocoded. Check the inputs and the connection, then try again."
        )

    hits = units.loc[found].copy()
    coords = [located[uid] for uid, ok in zip(uids, found) if ok]
    for column in GEOCODE_COLUMNS:
        hits[column] = [getattr(g, column) for g in coords]
    matched = gpd.GeoDataFrame(
        hits,
        geometry=gpd.points_from_xy([g.lon for g in coords], [g.lat for g in coords]),
        crs=OUTPUT_CRS,
    )

    # Points outside the expected region are geocoder errors
    region = region_geometry(region_boundary, OUTPUT_CRS)
    in_region = matched.geometry.intersects(region).to_numpy()
    if not in_region.all():
        logger.warning(f"{int((~in_region).sum())} geocoded units fall outside the region boundary")
    matched = matched.loc[in_region].reset_index(drop=True)

    matched_ids = set(id_strings(matched[unit_id]))
    unmatched = units.loc[[uid not in matched_ids for uid in uids]].reset_index(drop=True)

    logger.info(
        f"Query finished in {time.time() - t0:.1f}s: {len(matched)} located, {len(unmatched)} unmatched"
    )
    return QueryResult(matched=matched, unmatched=unmatched)
