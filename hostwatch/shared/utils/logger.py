import os
import logging
import sys
from logging.handlers import RotatingFileHandler

class LoggerSetup:
    """
    Centralized logging configuration for the Hostwatch services.
    Provides consistent logging across all modules with both console and file output.
    """
    _initialized = False
    _configured: set[str] = set()
    _logs_dir = os.getenv('LOG_DIR', '/var/log/hostwatch')
    _console_level = logging.getLevelName(os.getenv('LOG_LEVEL', 'INFO').upper())
    _max_bytes = 10 * 1024 * 1024  # 10MB per file
    _backup_count = 5

    @classmethod
    def configure(cls,
                  level: str | None = None,
                  logs_dir: str | None = None,
                  max_bytes: int | None = None,
                  backup_count: int | None = None) -> None:
        """
        Override the console level and the rotating file settings.

        The level also applies to loggers created earlier; the file settings
        only to loggers created afterwards.

        Args:
            level: Console log level name (e.g. 'DEBUG')
            logs_dir: Directory for rotating log files
            max_bytes: Size at which a log file is rotated
            backup_count: Number of rotated files kept
        """
        if level:
            resolved = logging.getLevelName(level.upper())
            if isinstance(resolved, int):
                cls._console_level = resolved
                for name in cls._configured:
                    cls.update_log_level(name, console_level=resolved)
        if logs_dir:
            cls._logs_dir = logs_dir
        if max_bytes:
            cls._max_bytes = max_bytes
        if backup_count is not None:
            cls._backup_count = backup_count

    @classmethod
    def _get_log_path(cls, name: str) -> str:
        """
        Generate a log file path based on the name.

        Args:
            name: Name to create log file for (module path or class name)
        Returns:
            str: Path for the log file
        """
        if '.' in name:
            # For module paths, use the last part
            filename = f"{name.split('.')[-1]}.log"
        else:
            filename = f"{name}.log"

        return os.path.join(cls._logs_dir, filename)

    @classmethod
    def create_file_handler(cls, path: str) -> RotatingFileHandler:
        """Rotating debug-level file handler using the configured size and backups"""
        file_handler = RotatingFileHandler(
            path,
            maxBytes=cls._max_bytes,
            backupCount=cls._backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_formatter = logging.Formatter(
            '%(asctime)s - %(threadName)s - %(levelname)s - [%(name)s] - %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        return file_handler

    @classmethod
    def setup(cls, name: str) -> logging.Logger:
        """
        Set up and return a logger.
        Automatically handles both module paths and class names.

        Args:
            name: Logger name (__name__ for modules or __class__.__name__ for classes)
        Returns:
            logging.Logger: Configured logger instance
        Example:
            # For module-level logging:
            logger = LoggerSetup.setup(__name__)
            # Creates main.log from hostwatch.services.agent.src.main

            # For class-level logging:
            logger = LoggerSetup.setup(__class__.__name__)
            # Creates MetricsCollector.log
        """
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)

        # Avoid adding handlers multiple times
        if not logger.handlers:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(cls._console_level if isinstance(cls._console_level, int) else logging.INFO)
            console_formatter = logging.Formatter(
                '%(asctime)s - %(levelname)s - %(message)s'
            )
            console_handler.setFormatter(console_formatter)
            logger.addHandler(console_handler)
            cls._configured.add(name)

            # Only add file handler if not in test environment
            if "pytest" not in sys.modules:
                try:
                    debug_log_file = cls._get_log_path(name)
                    os.makedirs(os.path.dirname(debug_log_file), exist_ok=True)

                    logger.addHandler(cls.create_file_handler(debug_log_file))
                except (PermissionError, OSError) as e:
                    # Log to console if file logging fails
                    console_handler.setLevel(logging.DEBUG)
                    logger.warning(f"Could not set up file logging: {str(e)}")

        if not cls._initialized:
            # Quiet noisy loggers
            logging.getLogger('websockets').setLevel(logging.WARNING)
            logging.getLogger('aiohttp').setLevel(logging.WARNING)
            logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
            cls._initialized = True

        return logger

    @classmethod
    def update_log_level(cls, name: str,
                        console_level: int | None = None,
                        file_level: int | None = None) -> None:
        """
        Update log levels for an existing logger.
        Args:
            name: Name of the logger
            console_level: New console handler log level (if None, level remains unchanged)
            file_level: New file handler log level (if None, level remains unchanged)
        """
        logger = logging.getLogger(name)
        for handler in logger.handlers:
            if isinstance(handler, RotatingFileHandler):
                if file_level is not None:
                    handler.setLevel(file_level)
            elif isinstance(handler, logging.StreamHandler):
                if console_level is not None:
                    handler.setLevel(console_level)
