#!/usr/bin/env python3
"""
CLI for the QOR engine.

Usage:
    python run_qor.py query voters.csv --region state.shp --year 2022 --output located.gpkg --unmatched unmatched.csv
    python run_qor.py overlay located.gpkg districts.shp --point-id voter_id --polygon-id GEOID --region-code 37
    python run_qor.py recover unmatched.csv districts.shp zcta.shp --unit-id voter_id --zip-id ZCTA5CE20
"""

import argparse
import logging
import sys
import time

import geopandas as gpd
import pandas as pd

from qor_engine import Config, QORError, RegionFilter, overlay, query, recover


def setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def region_filter_from(args):
    if not args.region_code:
        return None
    return RegionFilter(code=args.region_code, column=args.region_column)


def run_overlay(args, config: Config):
    points = gpd.read_file(args.points)
    polygons = gpd.read_file(args.polygons)
    result = overlay(
        points, polygons,
        point_id=args.point_id, polygon_id=args.polygon_id,
        region_filter=region_filter_from(args), national_polygons=args.national,
        config=config,
    )
    result.matches.to_csv(args.output, index=False)
    print(f"Wrote {len(result)} matches to {args.output} ({result.classification.counts()})")


def run_recover(args, config: Config):
    units = pd.read_csv(args.units, dtype=str)
    polygons = gpd.read_file(args.polygons)
    zip_areas = gpd.read_file(args.zip_areas)
    region = gpd.read_file(args.region) if args.region else None
    matches, unrecoverable = recover(
        units, polygons, zip_areas,
        unit_id=args.unit_id, unit_zip=args.unit_zip,
        polygon_id=args.polygon_id, zip_id=args.zip_id,
        region_boundary=region, region_filter=region_filter_from(args),
        national_polygons=args.national, config=config,
    )
    matches.to_csv(args.output, index=False)
    print(f"Wrote {len(matches)} recovered units to {args.output}")
    if args.unrecoverable:
        unrecoverable.to_csv(args.unrecoverable, index=False)
        print(f"Wrote {len(unrecoverable)} unrecoverable units to {args.unrecoverable}")


def run_query(args, config: Config):
    units = pd.read_csv(args.units, dtype=str)
    region = gpd.read_file(args.region)
    matched, unmatched = query(
        units,
        unit_id=args.unit_id, street=args.street, city=args.city, state=args.state,
        region_boundary=region, year=args.year,
        units_per_batch=args.units_per_batch, sleep_time=args.sleep,
        zip_id=args.unit_zip, config=config,
    )
    matched.to_file(args.output)
    print(f"Wrote {len(matched)} located units to {args.output}")
    if args.unmatched:
        unmatched.to_csv(args.unmatched, index=False)
        print(f"Wrote {len(unmatched)} unmatched units to {args.unmatched}")


def main():
    parser = argparse.ArgumentParser(description="QOR engine: Query, Overlay, Recover")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command")

    def add_region_options(p):
        p.add_argument("--region-code", help="Keep only polygons with this region code (e.g. state FIPS 37)")
        p.add_argument("--region-column", help="Column holding the region code (default: first 'state*' column)")
        p.add_argument("--national", action="store_true", help="Polygons are a national layer")

    p_overlay = sub.add_parser("overlay", help="Match points to polygons")
    p_overlay.add_argument("points", help="Vector file of points")
    p_overlay.add_argument("polygons", help="Vector file of polygons")
    p_overlay.add_argument("--point-id", default="point_id")
    p_overlay.add_argument("--polygon-id", default="polygon_id")
    p_overlay.add_argument("--output", default="overlay.csv", help="Output CSV")
    add_region_options(p_overlay)

    p_recover = sub.add_parser("recover", help="Place unmatched units by zip code")
    p_recover.add_argument("units", help="CSV of unmatched units")
    p_recover.add_argument("polygons", help="Vector file of polygons")
    p_recover.add_argument("zip_areas", help="Vector file of zip code areas")
    p_recover.add_argument("--unit-id", default="unit_id")
    p_recover.add_argument("--unit-zip", default="postalcode")
    p_recover.add_argument("--polygon-id", default="polygon_id")
    p_recover.add_argument("--zip-id", default="postalcode")
    p_recover.add_argument("--region", help="Vector file of the region boundary")
    p_recover.add_argument("--output", default="recovered.csv", help="Output CSV")
    p_recover.add_argument("--unrecoverable", help="Output CSV for units that could not be placed")
    add_region_options(p_recover)

    p_query = sub.add_parser("query", help="Geocode unit addresses with the Census geocoder")
    p_query.add_argument("units", help="CSV of units with address columns")
    p_query.add_argument("--region", required=True, help="Vector file of the region boundary")
    p_query.add_argument("--year", type=int, required=True, help="Year the addresses were collected")
    p_query.add_argument("--unit-id", default="unit_id")
    p_query.add_argument("--street", default="street")
    p_query.add_argument("--city", default="city")
    p_query.add_argument("--state", default="state")
    p_query.add_argument("--unit-zip", default="postalcode")
    p_query.add_argument("--units-per-batch", type=int, default=None)
    p_query.add_argument("--sleep", type=float, default=None, help="Seconds between batches")
    p_query.add_argument("--output", default="located.gpkg", help="Output vector file")
    p_query.add_argument("--unmatched", help="Output CSV for units that could not be geocoded")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = Config()
    commands = {"overlay": run_overlay, "recover": run_recover, "query": run_query}

    t0 = time.time()
    try:
        commands[args.command](args, config)
    except QORError as e:
        logging.getLogger("run_qor").error(str(e))
        sys.exit(2)
    print(f"Done in {time.time() - t0:.1f}s")


if __name__ == "__main__":
    main()
