import logging
import logging.config
import queue
from enum import Enum
from logging.handlers import QueueHandler, QueueListener
from pathlib import Path
from typing import Any

import uvicorn

from authgate.core.utils.config import Settings


class ColoredConsoleFormatter(uvicorn.logging.DefaultFormatter):
    class ConsoleColors(str, Enum):
        """Colors can be found here: https://talyian.github.io/ansicolors/"""

        DEBUG = "\033[38;5;12m"
        INFO = "\033[38;5;10m"
        WARNING = "\033[38;5;11m"
        ERROR = "\033[38;5;9m"
        CRITICAL = "\033[38;5;1m"
        BOLD = "\033[1m"
        END = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(datefmt="%d-%b-%y %H:%M:%S")

        self.formatters = {}

        for level in [
            logging.DEBUG,
            logging.INFO,
            logging.WARNING,
            logging.ERROR,
            logging.CRITICAL,
        ]:
            fmt = (
                "%(asctime)s - %(name)s - "
                + self.ConsoleColors.BOLD
                + "%(levelname)s"
                + self.ConsoleColors.END
                + " - "
                + self.ConsoleColors[logging.getLevelName(level)]
                + "%(message)s"
                + self.ConsoleColors.END
            )
            self.formatters[level] = logging.Formatter(fmt, self.datefmt)

    def format(self, record: logging.LogRecord) -> str:
        formatter: logging.Formatter = self.formatters.get(
            record.levelno,
            self.formatters[logging.ERROR],
        )
        return formatter.format(record)


class LogConfig:
    """
    Logging configuration to be set for the server
    We convert this class to a dict to be used by Python logging module.

    Call `LogConfig().initialize_loggers()` to configure the logging ecosystem.
    """

    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Logging config
    # See https://docs.python.org/3/library/logging.config.html#logging-config-dictschema
    def get_config_dict(self, settings: Settings):
        # We can't use a dependency to access settings as this function is not an endpoint. The object must thus be passed as a parameter.

        MINIMUM_LOG_LEVEL: str = "DEBUG" if settings.LOG_DEBUG_MESSAGES else "INFO"

        return {
            "version": 1,
            # If LOG_DEBUG_MESSAGES is set, we let existing loggers, including the database and uvicorn loggers
            "disable_existing_loggers": not settings.LOG_DEBUG_MESSAGES,
            "formatters": {
                "default": {
                    "format": self.LOG_FORMAT,
                    "datefmt": "%d-%b-%y %H:%M:%S",
                },
                "console_formatter": {
                    "()": "authgate.core.utils.log.ColoredConsoleFormatter",
                },
            },
            "handlers": {
                # Console handler is always active, even in production.
                "console": {
                    "formatter": "console_formatter",
                    "class": "logging.StreamHandler",
                    "level": MINIMUM_LOG_LEVEL,
                },
                # There is a handler per log file
                # They are based on RotatingFileHandler to logs in multiple files
                # https://docs.python.org/3/library/logging.handlers.html#logging.handlers.RotatingFileHandler
                "file_errors": {
                    # File_errors should receive all errors, even when they are already logged elsewhere
                    "formatter": "default",
                    "class": "logging.handlers.RotatingFileHandler",
                    "filename": "logs/errors.log",
                    "maxBytes": 1024 * 1024 * 10,  # ~ 10 MB
                    "backupCount": 20,
                    "level": "INFO",
                },
                "file_access": {
                    # file_access should receive information about all incoming requests and JWT verifications
                    "formatter": "default",
                    "class": "logging.handlers.RotatingFileHandler",
                    "filename": "logs/access.log",
                    "maxBytes": 1024 * 1024 * 40,  # ~ 40 MB
                    "backupCount": 50,
                    "level": "INFO",
                },
                "file_security": {
                    # file_security should receive information about logins, consents, code and token issuance, rotation and revocation.
                    # Success and failures should be logged
                    "formatter": "default",
                    "class": "logging.handlers.RotatingFileHandler",
                    "filename": "logs/security.log",
                    "maxBytes": 1024 * 1024 * 40,  # ~ 40 MB
                    "backupCount": 50,
                    "level": "INFO",
                },
            },
            # Each logger has:
            #  - specific handlers (ex: file_access or file_security), they log targeted records like endpoint access or authentication
            #  - error related handlers (file_errors), they log all errors regardless of their provenance
            #  - default handler which logs to the console for development and debugging purpose
            "loggers": {
                "root": {
                    "level": "DEBUG",
                    "handlers": ["console"],
                },
                "authgate": {
                    "propagate": False,
                },
                # authgate.access should log incoming request and JWT verifications
                "authgate.access": {
                    "handlers": [
                        "file_access",
                        "console",
                    ],
                    "level": MINIMUM_LOG_LEVEL,
                },
                "authgate.security": {
                    "handlers": [
                        "file_security",
                        "console",
                    ],
                    "level": MINIMUM_LOG_LEVEL,
                },
                # authgate.error should be used to log all errors which does not correspond to one of the specific loggers
                "authgate.error": {
                    "handlers": [
                        "file_errors",
                        "console",
                    ],
                    "level": MINIMUM_LOG_LEVEL,
                },
                # We disable "uvicorn.access" to replace it with our custom "authgate.access" which add the request_id
                "uvicorn.access": {"handlers": []},
                "uvicorn.error": {
                    "handlers": [
                        "file_errors",
                        "console",
                    ],
                    "level": MINIMUM_LOG_LEVEL,
                    "propagate": False,
                },
            },
        }

    def initialize_loggers(self, settings: Settings):
        """
        Initialize the logging ecosystem.

        AuthGate is an async FastAPI application and logging is done by endpoints. In order to limit the speed impact of
        logging, records are processed in a specific thread: all handlers are encapsulated in QueueHandlers.
        """
        # https://rob-blackbourn.medium.com/how-to-use-python-logging-queuehandler-with-dictconfig-1e8b1284e27a

        # If logs/ folder does not exist, the logging module won't be able to create file handlers
        Path("logs/").mkdir(parents=True, exist_ok=True)

        config_dict = self.get_config_dict(settings=settings)
        logging.config.dictConfig(config_dict)

        loggers = [logging.getLogger(name) for name in config_dict["loggers"]]

        for logger in loggers:
            if len(logger.handlers) == 0:
                continue

            log_queue: queue.Queue[Any] = queue.Queue(-1)
            queue_handler = QueueHandler(log_queue)

            # The listener will watch the queue and let the previous handlers process logs records in their own thread
            listener = QueueListener(
                log_queue,
                *logger.handlers,
                respect_handler_level=True,
            )
            listener.start()

            logger.handlers = []
            logger.addHandler(queue_handler)
