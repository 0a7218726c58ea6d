# Project: sqlload - parallel bulk loader for CSV, SQL and MySQL dump files
# Objective: Split large files into segments and load them concurrently
import argparse
import sys
from typing import List, Optional

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .core.constants import Format, parse_commit_frequency
from .core.exceptions import LoadError
from .core.loading import LoadClient, LoadResult
from .core.loading.service import retry_hint
from .core.loading.reader import Source
from .setup.config import load_config
from .setup.logging import configure_logging, logger


def _format(value: str) -> Format:
    try:
        return Format.from_name(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _commit(value: str) -> int:
    try:
        return parse_commit_frequency(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid commit frequency: {value} (use auto or a row count)")


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sqlload",
        description="Load CSV, SQL dump and MySQL dump files into a database, splitting each file across threads.",
        epilog="""
Examples:
  %(prog)s -d shop orders.csv
    Load orders.csv into table "orders"

  %(prog)s -d shop --header -t public.orders -n 4 -c 10000 orders.csv
    CSV with a header row, 4 threads, commit every 10000 rows

  %(prog)s -d shop -n 8 --copy big.csv
    Stream the file into COPY from 8 connections

  %(prog)s -d shop -n 4 dump.sql
    MySQL dump (detected from its banner) or SQL dump
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    parser.add_argument("files", nargs="+", metavar="FILE", help="file(s) to load")
    parser.add_argument("--help", action="help", help="show this help message and exit")

    db_group = parser.add_argument_group("Connection options (default from POSTGRES_* variables)")
    db_group.add_argument("-h", "--host", help="name of server host")
    db_group.add_argument("-p", "--port", type=int, help="server port")
    db_group.add_argument("-u", "--user", help="server user name")
    db_group.add_argument("-w", "--password", help="server user password")
    db_group.add_argument("-d", "--database", dest="database_name", help="database name")
    db_group.add_argument("-s", "--schema", dest="schema_name", help="destination schema")

    load_group = parser.add_argument_group("Loading options (default from SQLLOAD_* variables)")
    load_group.add_argument("-f", "--format", type=_format, help="file format: auto, CSV, 'CSV with header', MySQL or SQL")
    load_group.add_argument("--header", action="store_true", default=None,
                            help="CSV files have a header row (other formats ignore it)")
    load_group.add_argument("-t", "--into", dest="target", help="target table name")
    load_group.add_argument("-n", "--threads", type=int, help="number of threads")
    load_group.add_argument("-c", "--commit", dest="commit_frequency", type=_commit,
                            help="commit every n rows, or auto to let the server commit")
    load_group.add_argument("-r", "--retry", dest="max_retries", type=int,
                            help="number of times to retry on transaction error")
    load_group.add_argument("--retry-backoff", dest="retry_backoff_seconds", type=float,
                            help="seconds to wait before retry n, multiplied by n")
    load_group.add_argument("--constraint-check-time",
                            help="when to check uniqueness constraints (server keyword)")
    load_group.add_argument("--copy", dest="bulk_copy", action="store_true", default=None,
                            help="load CSV through COPY instead of INSERT statements")
    load_group.add_argument("--encoding", help="file encoding")
    load_group.add_argument("-q", "--quiet", action="store_true", default=None, help="no progress output")
    load_group.add_argument("--verbose", action="store_true", help="debug logging on the console")

    args = parser.parse_args(argv)
    if args.header and args.format not in (None, Format.AUTO, Format.CSV, Format.CSV_HEADER):
        parser.error("--header only applies to CSV files")
    return args


def _overrides(args: argparse.Namespace) -> dict:
    keys = (
        "host", "port", "user", "password", "database_name", "schema_name",
        "format", "header", "target", "threads", "commit_frequency", "max_retries",
        "retry_backoff_seconds", "constraint_check_time", "bulk_copy", "encoding", "quiet",
    )
    return {key: getattr(args, key) for key in keys}


def _report(console: Console, result: LoadResult, quiet: bool):
    if result.skipped:
        console.print(f"[yellow]Skipped {escape(result.path)}:[/yellow] {escape(result.error)}")
        return
    if result.error is None:
        if not quiet:
            console.print(f"... loaded {result.rows} rows in {result.seconds:.3f} s.")
        return
    console.print(f"[red]ERROR:[/red] {escape(result.error)}")
    for error in getattr(result.exception, "errors", []):
        if error.line_no is not None:
            console.print(f"  During query that ends on line {error.line_no}, starting with:")
            console.print(f"       {error.query}", markup=False)
        console.print(f"  {error.cause}", markup=False)
        hint = retry_hint(error)
        if hint:
            console.print(f"NOTE: In case of transient conflicts try flags: {hint}", markup=False)


def run(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    """Load every file in ``args.files``; returns the process exit status."""
    console = console or Console()
    try:
        config = load_config(**_overrides(args))
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/red] {escape(str(e))}")
        return 1

    quiet = config.loading.quiet
    with LoadClient(config) as client, Progress(
        SpinnerColumn(),
        TextColumn("[bold green]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
        disable=quiet,
    ) as progress:
        tasks = []

        def started(source: Source, fmt: Format):
            if not quiet:
                console.print(f"Loading {fmt} file {source.path}...", markup=False)
            tasks.append(progress.add_task(source.name, total=None))

        def finished(result: LoadResult):
            while tasks:
                progress.remove_task(tasks.pop())
            _report(console, result, quiet)

        try:
            batch = client.load_files(args.files, on_start=started, on_result=finished)
        except (LoadError, OSError) as e:
            logger.error(f"[sqlload] Failed to load files: {e}")
            console.print(f"[red]ERROR:[/red] {escape(str(e))}")
            return 1
    return 1 if batch.failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    configure_logging(verbose=args.verbose)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
