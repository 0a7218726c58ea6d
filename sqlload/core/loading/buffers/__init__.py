from .csv_buffer import CsvBuffer, CsvState
from .mysql_buffer import MySQLBuffer, MySQLState, Query
from .query_buffer import QueryBuffer

__all__ = ["CsvBuffer", "CsvState", "MySQLBuffer", "MySQLState", "Query", "QueryBuffer"]
