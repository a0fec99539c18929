#!/usr/bin/env python3
"""csvprep CLI - Normalize raw CSV files before loading them into the warehouse.

This CLI provides tools for:
- file: Normalize a single CSV file
- run: Normalize every job listed in tidywh.yaml
- add: Register a job in tidywh.yaml
"""

import argparse
import sys
import logging

from tidywh.common.config import add_csv_job, get_config_path, load_config, save_config
from tidywh.errors import MalformedRecord, SchemaMismatch

# Setup logging
handler = logging.StreamHandler(sys.stdout)
logging.basicConfig(
    format='%(asctime)s - %(levelname)s - %(message)s',
    level=logging.INFO,
    handlers=[handler],
    force=True
)
logger = logging.getLogger("tidywh.csvprep")


def cmd_file(args):
    """Normalize a single CSV file."""
    from tidywh.csvprep.normalize import normalize_csv

    config = load_config()
    columns = args.columns.split(',') if args.columns else None

    report = normalize_csv(
        source=args.source,
        destination=args.destination,
        col_types=args.col_types,
        columns=columns,
        encoding=args.encoding or config["csvprep"]["encoding"]
    )
    print(f"\n✓ {report.rows} rows written to {report.destination}")


def cmd_run(args):
    """Normalize every configured job."""
    from tidywh.csvprep.normalize import run_jobs

    config = load_config()
    jobs = config["csvprep"]["jobs"]

    if not jobs:
        logger.warning("No csvprep jobs configured in tidywh.yaml")
        return

    reports = run_jobs(
        jobs, encoding=config["csvprep"]["encoding"], base_dir=get_config_path().parent
    )
    for report in reports:
        print(f"✓ {report.source.name} -> {report.destination} ({report.rows} rows)")


def cmd_add(args):
    """Register a csvprep job."""
    config = load_config()
    entry = add_csv_job(config, args.source, args.destination, args.col_types)
    save_config(config)
    logger.info(f"Saved job: {entry['source']} -> {entry['destination']} ({entry['col_types']})")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='csvprep',
        description='Normalize raw CSV files for warehouse bulk loading',
        epilog='For detailed help: csvprep file --help'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    file_parser = subparsers.add_parser(
        'file',
        help='Normalize a single CSV file',
        description='''Normalize a raw CSV file.

TYPE CODES (one per column):
  c  text         quoted, embedded line breaks replaced by a space
  i  integer      d  double      l  logical (TRUE/FALSE)
  T  date-time    D  date        t  time of day
  _  skip column

EXAMPLES:
  # stores.csv: flatten addresses, quote text
  csvprep file csv/stores.csv csv/store_mod.csv --col-types icccc

  # sales.csv with ISO timestamps
  csvprep file csv/sales.csv csv/sales_mod.csv --col-types Tliiciciciciiccid
''',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    file_parser.add_argument('source', help='Raw CSV file')
    file_parser.add_argument('destination', help='Normalized CSV file to write')
    file_parser.add_argument('--col-types', required=True, help='Column type codes, e.g. "icccc"')
    file_parser.add_argument(
        '--columns',
        help='Comma-separated column names when the source has no header row'
    )
    file_parser.add_argument('--encoding', help='Source encoding (default from config: utf-8-sig)')
    file_parser.set_defaults(func=cmd_file)

    run_parser = subparsers.add_parser('run', help='Normalize every job listed in tidywh.yaml')
    run_parser.set_defaults(func=cmd_run)

    add_parser = subparsers.add_parser('add', help='Register a job in tidywh.yaml')
    add_parser.add_argument('source', help='Raw CSV file (relative to the project root)')
    add_parser.add_argument('destination', help='Normalized CSV file to write')
    add_parser.add_argument('--col-types', required=True, help='Column type codes')
    add_parser.set_defaults(func=cmd_add)

    # Parse and execute
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user", file=sys.stderr)
        sys.exit(130)
    except (SchemaMismatch, MalformedRecord) as e:
        print(f"\nInvalid input: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
