from .service import BatchResult, LoadClient, LoadResult, detect_format

__all__ = ["BatchResult", "LoadClient", "LoadResult", "detect_format"]
