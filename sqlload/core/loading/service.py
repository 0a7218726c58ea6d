"""
Load client: format detection, pre-flight checks, segmentation and the
worker threads that load segments concurrently.
"""
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from ...database.pool import ConnectionPool
from ...database.statement import should_retry
from ...setup.config import AppConfig
from ...setup.logging import logger
from ...utils.file_system import strip_extension
from ..constants import Format
from ..exceptions import FileLoadError, LoadError, SegmentLoadError, UnsupportedFormatError
from .file_loaders import CsvLoader, DumpLoader, FileLoader, MySQLLoader, is_mysql_dump
from .reader import Source
from .segments import SegmentLoader

RETRY_HINT = "--commit=auto --retry=3"

StartCallback = Callable[[Source, Format], None]


@dataclass
class LoadResult:
    """Outcome of loading one file."""
    path: str
    format: Format
    target: Optional[str]
    rows: int = 0
    segments: int = 0
    seconds: float = 0.0
    skipped: bool = False
    error: Optional[str] = None
    exception: Optional[LoadError] = field(default=None, repr=False, compare=False)


@dataclass
class BatchResult:
    """Outcome of ``load_files``."""
    results: List[LoadResult] = field(default_factory=list)

    @property
    def rows(self) -> int:
        return sum(result.rows for result in self.results)

    @property
    def failed(self) -> List[LoadResult]:
        return [result for result in self.results if result.skipped or result.error]


def detect_format(source: Source) -> Format:
    """
    ``.csv`` files are CSV; ``.sql`` files are MySQL dumps when they start with
    the mysqldump banner and SQL dumps otherwise.
    """
    name = source.name
    if name.endswith(".csv"):
        return Format.CSV
    if name.endswith(".sql"):
        if is_mysql_dump(source):
            return Format.MYSQL_DUMP
        return Format.SQL_DUMP
    raise UnsupportedFormatError(f"Cannot determine format for {source.path}. Use --format explicitly.")


def retry_hint(error: BaseException) -> Optional[str]:
    """Suggested options when ``error`` (or its cause) is a transient conflict."""
    while error is not None:
        if should_retry(error, True):
            return RETRY_HINT
        error = error.__cause__
    return None


class LoadClient:
    """
    Loads files into the configured database.

    One thread per segment; all segments are computed and prepared on the
    calling thread first. Connections come from a shared ConnectionPool.
    """

    def __init__(self, config: AppConfig, pool: Optional[ConnectionPool] = None):
        self.config = config
        self.loading = config.loading
        self.pool = pool if pool is not None else ConnectionPool(config.database, config.loading)

    def resolve_format(self, source: Source) -> Format:
        """The configured format, detected when AUTO. ``header`` only affects CSV files."""
        fmt = self.loading.format
        if fmt is Format.AUTO:
            fmt = detect_format(source)
        if fmt is Format.CSV and self.loading.header:
            return Format.CSV_HEADER
        return fmt

    def target_for(self, source: Source) -> str:
        return self.loading.target or strip_extension(source.name)

    def file_loader(self, source: Source, fmt: Format) -> FileLoader:
        target = self.target_for(source)
        if fmt in (Format.CSV, Format.CSV_HEADER):
            return CsvLoader(self.pool, self.loading, source, target, header=fmt is Format.CSV_HEADER)
        if fmt is Format.MYSQL_DUMP:
            return MySQLLoader(self.pool, self.loading, source, self.loading.target)
        if fmt is Format.SQL_DUMP:
            return DumpLoader(self.pool, self.loading, source)
        raise UnsupportedFormatError(f"Unsupported format: {fmt}")

    def load(self, path: str, on_start: Optional[StartCallback] = None) -> LoadResult:
        """
        Load one file and return its row count. ``on_start`` is called once
        the file passed its pre-flight check, before any segment runs.

        Raises:
            UnsupportedFormatError: the pre-flight check refused the file, no
                connection was opened.
            FileLoadError: one or more segments failed after all workers finished.
        """
        source = Source.from_path(path, self.loading.encoding)
        fmt = self.resolve_format(source)
        loader = self.file_loader(source, fmt)
        loader.check_format()
        if on_start is not None:
            on_start(source, fmt)

        started = time.perf_counter()
        logger.info(f"[LoadClient] Loading {fmt} file {source.path}...")

        threads = self.loading.threads
        segments = [loader.whole_file()] if threads == 1 else loader.split(threads)
        for segment in segments:
            segment.prepare()

        errors = self._run_segments(segments)
        rows = sum(segment.count for segment in segments)
        seconds = time.perf_counter() - started

        if errors:
            for error in errors:
                logger.error(f"[LoadClient] {source.path}: {error}")
                hint = retry_hint(error)
                if hint:
                    logger.error(f"[LoadClient] In case of transient conflicts try: {hint}")
            raise FileLoadError(source.path, errors, rows) from errors[0]

        logger.info(f"[LoadClient] ... loaded {rows} rows in {seconds:.3f} s.")
        return LoadResult(
            path=source.path, format=fmt, target=getattr(loader, "target", None),
            rows=rows, segments=len(segments), seconds=seconds,
        )

    def _run_segments(self, segments: List[SegmentLoader]) -> List[SegmentLoadError]:
        if len(segments) == 1:
            try:
                segments[0].run()
            except SegmentLoadError as e:
                return [e]
            return []

        errors = []
        with ThreadPoolExecutor(max_workers=len(segments), thread_name_prefix="sqlload") as executor:
            futures = [executor.submit(segment.run) for segment in segments]
            for future in futures:
                error = future.exception()
                if error is None:
                    continue
                if not isinstance(error, SegmentLoadError):
                    raise error
                errors.append(error)
        return errors

    def load_files(self, paths: Iterable[str], on_start: Optional[StartCallback] = None,
                   on_result: Optional[Callable[[LoadResult], None]] = None) -> BatchResult:
        """
        Load several files in order. Files refused by their pre-flight check
        are logged and recorded as skipped; a failed load is recorded and the
        next file is still attempted. ``on_result`` sees every result as soon
        as its file is done.
        """
        batch = BatchResult()
        for path in paths:
            try:
                result = self.load(path, on_start)
            except UnsupportedFormatError as e:
                logger.error(f"[LoadClient] Skipping {path}: {e}")
                result = LoadResult(path=str(path), format=self.loading.format, target=None,
                                    skipped=True, error=str(e), exception=e)
            except FileLoadError as e:
                result = LoadResult(path=str(path), format=self.loading.format, target=None,
                                    rows=e.rows_committed, error=str(e), exception=e)
            batch.results.append(result)
            if on_result is not None:
                on_result(result)
        return batch

    def close(self):
        self.pool.clear()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
