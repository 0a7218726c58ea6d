"""
Tests for the load client: format detection, threading and error collection.
"""
import pytest

from sqlload.core.constants import Format
from sqlload.core.exceptions import FileLoadError, SegmentLoadError, UnsupportedFormatError
from sqlload.core.loading import LoadClient, detect_format
from sqlload.core.loading.reader import Source
from sqlload.core.loading.service import RETRY_HINT, retry_hint
from sqlload.setup.config import AppConfig, LoadingConfig

MYSQL_BANNER = "-- MySQL dump 10.13  Distrib 5.7.22, for Linux (x86_64)\n"


@pytest.fixture
def client_factory(pool_factory):
    def _make(**loading):
        config = AppConfig(loading=LoadingConfig(**loading))
        return LoadClient(config, pool=pool_factory(config.loading))
    return _make


def _rows(count):
    return "".join(f"{i},name {i}\n" for i in range(count))


class TestDetectFormat:
    def test_csv(self, tmp_file_from):
        assert detect_format(Source.from_path(tmp_file_from("1,2\n"))) is Format.CSV

    def test_mysql_dump(self, tmp_file_from):
        path = tmp_file_from(MYSQL_BANNER + "INSERT INTO `t` VALUES (1);\n", suffix=".sql")
        assert detect_format(Source.from_path(path)) is Format.MYSQL_DUMP

    def test_sql_dump(self, tmp_file_from):
        path = tmp_file_from("INSERT INTO t VALUES (1);\n", suffix=".sql")
        assert detect_format(Source.from_path(path)) is Format.SQL_DUMP

    def test_unknown_extension(self, tmp_file_from):
        path = tmp_file_from("1,2\n", suffix=".txt")
        with pytest.raises(UnsupportedFormatError) as exc_info:
            detect_format(Source.from_path(path))
        assert str(exc_info.value) == f"Cannot determine format for {path}. Use --format explicitly."


class TestRetryHint:
    def test_transient_cause(self, db_error):
        error = SegmentLoadError(0, db_error("40001"))
        error.__cause__ = error.cause
        assert retry_hint(error) == RETRY_HINT

    def test_permanent_cause(self, db_error):
        error = SegmentLoadError(0, db_error("23505"))
        error.__cause__ = error.cause
        assert retry_hint(error) is None
        assert retry_hint(ValueError("boom")) is None


class TestLoadClient:
    def test_default_target_is_file_name(self, tmp_file_from, client_factory):
        client = client_factory()
        source = Source.from_path(tmp_file_from("1\n", name="orders.csv"))
        assert client.target_for(source) == "orders"
        assert client_factory(target="archive.orders").target_for(source) == "archive.orders"

    def test_injected_pool_is_used(self, pool_factory):
        config = AppConfig()
        pool = pool_factory(config.loading)
        assert len(pool) == 0
        assert LoadClient(config, pool=pool).pool is pool

    def test_header_only_applies_to_csv(self, tmp_file_from, client_factory):
        client = client_factory(header=True)
        csv_source = Source.from_path(tmp_file_from("id\n1\n"))
        sql_source = Source.from_path(tmp_file_from("INSERT INTO t VALUES (1);\n", suffix=".sql"))

        assert client.resolve_format(csv_source) is Format.CSV_HEADER
        assert client.resolve_format(sql_source) is Format.SQL_DUMP
        assert client_factory(header=True, format="CSV").resolve_format(sql_source) is Format.CSV_HEADER
        assert client_factory().resolve_format(csv_source) is Format.CSV

    def test_load_csv_single_thread(self, tmp_file_from, client_factory, connector):
        path = tmp_file_from(_rows(10), name="people.csv")

        result = client_factory().load(path)
        assert result.rows == 10
        assert result.segments == 1
        assert result.format is Format.CSV
        assert result.target == "people"
        assert len(connector.connections) == 1
        assert connector.committed[0] == ("0", "name 0")

    def test_load_csv_with_threads(self, tmp_file_from, client_factory, connector):
        path = tmp_file_from(_rows(200))

        result = client_factory(threads=4).load(path)
        assert result.rows == 200
        assert result.segments == 4
        assert sorted(connector.committed, key=lambda row: int(row[0])) == [
            (str(i), f"name {i}") for i in range(200)
        ]

    def test_load_csv_with_header_format(self, tmp_file_from, client_factory, connector):
        path = tmp_file_from("id,name\n" + _rows(5), name="t.csv")

        result = client_factory(format="CSV with header", threads=2).load(path)
        assert result.rows == 5
        prepares = [sql for connection in connector.connections
                    for sql, _ in connection.executed if sql.startswith("PREPARE")]
        assert prepares
        assert all('INSERT INTO "t" ("id", "name")' in sql for sql in prepares)

    def test_load_csv_through_copy(self, tmp_file_from, client_factory, connector):
        path = tmp_file_from(_rows(40))

        result = client_factory(threads=3, bulk_copy=True).load(path)
        assert result.rows == 40
        copied = b"".join(data for connection in connector.connections for data in connection.copied)
        # segments may finish in any order
        assert sorted(copied.splitlines()) == sorted(_rows(40).encode().splitlines())

    def test_load_mysql_dump(self, tmp_file_from, client_factory, connector):
        dump = MYSQL_BANNER + "LOCK TABLES `t` WRITE;\n" + "".join(
            f"INSERT INTO `t` VALUES ({i},'a'),({i},'b');\n" for i in range(30)
        ) + "UNLOCK TABLES;\n"
        path = tmp_file_from(dump, suffix=".sql")

        result = client_factory(threads=3).load(path)
        assert result.format is Format.MYSQL_DUMP
        assert result.rows == 60
        assert len(connector.committed) == 60

    def test_load_sql_dump(self, tmp_file_from, client_factory, connector):
        dump = "".join(f"INSERT INTO t VALUES ({i});\n" for i in range(25))
        path = tmp_file_from(dump, suffix=".sql")

        result = client_factory(threads=2).load(path)
        assert result.format is Format.SQL_DUMP
        assert result.rows == 25
        assert result.target is None

    def test_refused_file_opens_no_connection(self, tmp_file_from, client_factory, connector):
        """Pre-flight checks run before any connection is opened."""
        path = tmp_file_from("CREATE TABLE t (id int);\n", suffix=".sql")

        with pytest.raises(UnsupportedFormatError):
            client_factory(threads=2).load(path)
        assert connector.connections == []

    def test_failed_segment(self, tmp_file_from, client_factory, connector):
        path = tmp_file_from("1,a\n2,b\nbroken\n4,d\n")

        with pytest.raises(FileLoadError) as exc_info:
            client_factory(commit_frequency=1).load(path)
        error = exc_info.value
        assert error.path == path
        assert error.rows_committed == 2
        segment_error, = error.errors
        assert segment_error.line_no == 3
        assert isinstance(error.__cause__, SegmentLoadError)

    def test_other_segments_finish_when_one_fails(self, tmp_file_from, client_factory, connector):
        """One bad row fails its own segment only; the others still commit."""
        lines = [f"{i},x\n" for i in range(100)]
        lines[90] = "bad\n"
        path = tmp_file_from("".join(lines))

        with pytest.raises(FileLoadError) as exc_info:
            client_factory(threads=4).load(path)
        error = exc_info.value
        assert len(error.errors) == 1
        assert error.rows_committed == len(connector.committed)
        assert 0 < error.rows_committed < 99

    def test_load_files(self, tmp_file_from, client_factory, connector):
        good = tmp_file_from(_rows(3))
        unknown = tmp_file_from("1,2\n", suffix=".txt")
        failing = tmp_file_from("1,a\nbad\n")
        last = tmp_file_from(_rows(2))

        batch = client_factory().load_files([good, unknown, failing, last])
        assert [result.rows for result in batch.results] == [3, 0, 0, 2]
        assert batch.rows == 5
        assert batch.results[1].skipped
        assert batch.results[2].error
        assert not batch.results[2].skipped
        assert [result.path for result in batch.failed] == [unknown, failing]

    def test_load_files_callbacks(self, tmp_file_from, client_factory, connector):
        good = tmp_file_from(_rows(2))
        unknown = tmp_file_from("1,2\n", suffix=".txt")
        started, finished = [], []

        batch = client_factory().load_files(
            [good, unknown],
            on_start=lambda source, fmt: started.append((source.path, fmt)),
            on_result=finished.append,
        )
        assert started == [(good, Format.CSV)]
        assert finished == batch.results
        assert isinstance(finished[1].exception, UnsupportedFormatError)
        assert finished[0].exception is None

    def test_load_files_missing_file_propagates(self, tmp_path, client_factory):
        with pytest.raises(FileNotFoundError):
            client_factory().load_files([str(tmp_path / "missing.csv")])

    def test_close_clears_pool(self, tmp_file_from, client_factory, connector):
        with client_factory() as client:
            client.load(tmp_file_from(_rows(3)))
            assert len(client.pool) == 1
        assert len(client.pool) == 0
        assert connector.connections[0].closed
