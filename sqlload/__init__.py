"""
sqlload: split large CSV, SQL dump and MySQL dump files into byte segments
and load them concurrently over a pool of database connections.
"""

__version__ = "0.1.0"
