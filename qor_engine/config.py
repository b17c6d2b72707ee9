"""Configuration for the QOR pipeline."""

from dataclasses import dataclass


@dataclass
class Config:
    # Spatial
    default_crs: str = "EPSG:4326"  # assumed for points that carry no CRS (Query output CRS)

    # Distance resolution: points per dense distance table chunk
    distance_chunk_size: int = 2000

    # Progress logging cadence (points or units per message)
    progress_every: int = 10000

    # Census geocoder
    batch_url: str = "https://geocoding.geo.census.gov/geocoder/geographies/addressbatch"
    single_url: str = "https://geocoding.geo.census.gov/geocoder/geographies/address"
    benchmark: str = "Public_AR_Current"
    units_per_batch: int = 4000  # Census accepts up to 10,000; smaller batches are rejected less often
    sleep_time: float = 2.0  # seconds between batches
    batch_timeout: int = 300
    batch_max_retries: int = 3
    single_timeout: int = 50
    single_max_tries: int = 15
    single_retry_wait: float = 5.0

    def vintage_for_year(self, year: int) -> str:
        """Closest Census geocoder vintage for the year the addresses were collected."""
        year = int(year)
        if year <= 2010:
            return "Census2010_Current"
        if year <= 2017:
            return "ACS2017_Current"
        if year == 2020:
            return "Census2020_Current"
        if year <= 2025:
            return f"ACS{year}_Current"
        return "Current_Current"
