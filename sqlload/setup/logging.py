import logging
import sys
import threading
from datetime import datetime
from dotenv import load_dotenv
from os import getenv, makedirs, path
from pythonjsonlogger import jsonlogger

from ..utils.file_system import clear_latest_items

# Constants
LOG_FILES_HORIZON = 5
FIELDS = [
    "name",
    "process",
    "threadName",
    "thread",
    "asctime",
    "created",
    "msecs",
    "module",
    "funcName",
    "lineno",
    "levelname",
    "message",
]

# Load environment variables
load_dotenv()


class LoggingConfigurator:
    """
    Process wide logging setup.

    JSON file handlers go to ``<log dir>/<date>/<time>/``; development runs also
    log to the console. The ``testing`` environment gets no file handlers.
    """

    def __init__(self, environment: str = None, log_dir: str = None):
        self.environment = environment or getenv("ENVIRONMENT", "development")
        self.log_dir = log_dir or getenv("SQLLOAD_LOG_DIR", "logs")
        self.root_logger = logging.getLogger()
        self._configured = False
        self._lock = threading.Lock()

    def configure(self):
        """Configure logging once globally (thread-safe)."""
        with self._lock:
            if self._configured:
                return

            self.root_logger.handlers.clear()
            self.root_logger.setLevel(logging.DEBUG)

            if self.environment == "development":
                console_handler = self._create_console_handler(self._create_console_formatter())
                self.root_logger.addHandler(console_handler)

            if self.environment != "testing":
                error_handler, info_handler = self._create_file_handlers(self._create_json_formatter())
                self.root_logger.addHandler(error_handler)
                self.root_logger.addHandler(info_handler)

            self._configured = True

    def _create_json_formatter(self) -> jsonlogger.JsonFormatter:
        json_format = " ".join(f"%({field_name})s" for field_name in FIELDS)
        return jsonlogger.JsonFormatter(json_format)

    def _create_console_formatter(self) -> logging.Formatter:
        return logging.Formatter('%(levelname)s:%(name)s:%(message)s')

    def _create_console_handler(self, formatter: logging.Formatter) -> logging.Handler:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        handler.setLevel(logging.INFO)
        return handler

    def _create_file_handlers(self, formatter: jsonlogger.JsonFormatter) -> tuple:
        """Create error and info file handlers, pruning old run directories."""
        now = datetime.now()
        log_root_path = path.join(self.log_dir, now.strftime("%Y-%m-%d"))

        if path.exists(log_root_path):
            clear_latest_items(log_root_path, LOG_FILES_HORIZON)

        base_path = path.join(log_root_path, now.strftime("%H_%M"))
        makedirs(base_path, exist_ok=True)

        error_handler = logging.FileHandler(path.join(base_path, "error_log.log"), mode="a")
        error_handler.setFormatter(formatter)
        error_handler.setLevel(logging.ERROR)

        info_handler = logging.FileHandler(path.join(base_path, "info_log.log"), mode="a")
        info_handler.setFormatter(formatter)
        info_handler.setLevel(logging.INFO)

        return error_handler, info_handler

    def get_logger(self, name: str) -> logging.Logger:
        self.configure()
        return logging.getLogger(name)

    def reconfigure(self, environment: str = None, verbose: bool = False):
        """Reconfigure logging (used by the CLI and by tests)."""
        with self._lock:
            if environment:
                self.environment = environment
            self._configured = False
        self.configure()
        if verbose:
            for handler in self.root_logger.handlers:
                if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                    handler.setLevel(logging.DEBUG)


_configurator = LoggingConfigurator()


def configure_logging(environment: str = None, verbose: bool = False):
    _configurator.reconfigure(environment, verbose)


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger."""
    return _configurator.get_logger(name)


logger = get_logger("sqlload")
