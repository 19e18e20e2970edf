"""
Logger Utility Module
Provides centralized logging configuration for the Predictive Maintenance Scheduling Engine
"""

import logging
import logging.handlers
import sys
import json
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any
from functools import wraps
import colorlog

# Default configuration
DEFAULT_CONFIG = {
    'level': 'INFO',
    'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    'file': 'logs/predictive_maintenance.log',
    'max_bytes': 10485760,  # 10MB
    'backup_count': 10,
    'enable_console': True,
    'enable_file': False,
    'enable_color': True,
    'enable_json': False,
}

# Thread-local storage for context; batch workers set their own equipment id
context = threading.local()

_STANDARD_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname', 'levelno',
    'lineno', 'module', 'msecs', 'message', 'pathname', 'process', 'processName',
    'relativeCreated', 'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'request_id', 'equipment_id', 'taskName', 'log_color',
}


class ContextFilter(logging.Filter):
    """Add contextual information to log records"""

    def filter(self, record):
        """Add context data to log record"""
        record.request_id = getattr(context, 'request_id', 'N/A')
        record.equipment_id = getattr(context, 'equipment_id', 'N/A')
        return True


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging"""

    def format(self, record):
        """Format log record as JSON"""
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
            'request_id': getattr(record, 'request_id', 'N/A'),
            'equipment_id': getattr(record, 'equipment_id', 'N/A'),
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        # Extra fields passed through logger.*(..., extra={...})
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class LoggerManager:
    """Centralized logger management"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = DEFAULT_CONFIG.copy()
        if config:
            self.config.update(config)
        self.loggers = {}

    @classmethod
    def from_settings(cls, settings) -> 'LoggerManager':
        """Build a manager from the ``logging`` section of Settings"""
        logging_config = settings.get('logging', {}) or {}
        config = {}
        for key in ['level', 'format', 'enable_console', 'enable_color', 'enable_file', 'enable_json']:
            if key in logging_config:
                config[key] = logging_config[key]

        # Handle nested file config
        file_config = logging_config.get('file')
        if isinstance(file_config, dict):
            config['file'] = file_config.get('path', DEFAULT_CONFIG['file'])
            config['max_bytes'] = file_config.get('max_bytes', DEFAULT_CONFIG['max_bytes'])
            config['backup_count'] = file_config.get('backup_count', DEFAULT_CONFIG['backup_count'])

        return cls(config)

    def setup_logging(self):
        """Setup root logger configuration"""
        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, self.config['level']))

        # Remove existing handlers
        root_logger.handlers = []

        context_filter = ContextFilter()

        if self.config['enable_console']:
            console_handler = self._create_console_handler()
            console_handler.addFilter(context_filter)
            root_logger.addHandler(console_handler)

        if self.config['enable_file']:
            file_handler = self._create_file_handler()
            file_handler.addFilter(context_filter)
            root_logger.addHandler(file_handler)

        if self.config['enable_json']:
            json_handler = self._create_json_handler()
            json_handler.addFilter(context_filter)
            root_logger.addHandler(json_handler)

        # Keeps the last-resort stderr handler quiet when all outputs are off
        if not root_logger.handlers:
            root_logger.addHandler(logging.NullHandler())

    def _create_console_handler(self) -> logging.Handler:
        """Create console handler with optional color support"""
        console_handler = logging.StreamHandler(sys.stdout)

        if self.config['enable_color']:
            formatter = colorlog.ColoredFormatter(
                '%(log_color)s%(asctime)s - %(name)s - %(levelname)s - %(message)s%(reset)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                log_colors={
                    'DEBUG': 'cyan',
                    'INFO': 'green',
                    'WARNING': 'yellow',
                    'ERROR': 'red',
                    'CRITICAL': 'red,bg_white',
                }
            )
        else:
            formatter = logging.Formatter(
                self.config['format'],
                datefmt='%Y-%m-%d %H:%M:%S'
            )

        console_handler.setFormatter(formatter)
        console_handler.setLevel(getattr(logging, self.config['level']))

        return console_handler

    def _create_file_handler(self) -> logging.Handler:
        """Create rotating file handler"""
        log_file = Path(self.config['file'])
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=self.config['max_bytes'],
            backupCount=self.config['backup_count']
        )
        file_handler.setFormatter(logging.Formatter(self.config['format'], datefmt='%Y-%m-%d %H:%M:%S'))
        file_handler.setLevel(getattr(logging, self.config['level']))

        return file_handler

    def _create_json_handler(self) -> logging.Handler:
        """Create JSON file handler for structured logging"""
        json_file = Path(str(self.config['file']).replace('.log', '.json'))
        json_file.parent.mkdir(parents=True, exist_ok=True)

        json_handler = logging.handlers.RotatingFileHandler(
            json_file,
            maxBytes=self.config['max_bytes'],
            backupCount=self.config['backup_count']
        )
        json_handler.setFormatter(JSONFormatter())
        json_handler.setLevel(getattr(logging, self.config['level']))

        return json_handler

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create a logger instance"""
        if name not in self.loggers:
            self.loggers[name] = logging.getLogger(name)
        return self.loggers[name]


_logger_manager: Optional[LoggerManager] = None


def setup_logging(settings=None) -> LoggerManager:
    """Configure root logging from Settings (or defaults)

    Args:
        settings: Optional Settings instance

    Returns:
        The active LoggerManager
    """
    global _logger_manager
    _logger_manager = LoggerManager.from_settings(settings) if settings is not None else LoggerManager()
    _logger_manager.setup_logging()
    return _logger_manager


def get_logger(name: str = None) -> logging.Logger:
    """Get a logger instance

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name or 'predictive_maintenance')


def set_request_id(request_id: Optional[str]):
    """Set request ID for log correlation on the current thread"""
    context.request_id = request_id or 'N/A'


def set_equipment_id(equipment_id: Optional[str]):
    """Set equipment ID for log tracking on the current thread"""
    context.equipment_id = equipment_id or 'N/A'


@contextmanager
def log_context(request_id: Optional[str] = None, equipment_id: Optional[str] = None):
    """Temporarily bind request/equipment ids to log records of this thread"""
    previous = (getattr(context, 'request_id', None), getattr(context, 'equipment_id', None))
    if request_id is not None:
        set_request_id(request_id)
    if equipment_id is not None:
        set_equipment_id(equipment_id)
    try:
        yield
    finally:
        set_request_id(previous[0])
        set_equipment_id(previous[1])


def log_execution_time(func):
    """Decorator to log function execution time

    Args:
        func: Function to decorate

    Returns:
        Decorated function
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_logger(func.__module__)
        start_time = datetime.now()

        try:
            logger.debug(f"Starting {func.__name__}")
            result = func(*args, **kwargs)
            execution_time = (datetime.now() - start_time).total_seconds()
            logger.info(f"{func.__name__} completed in {execution_time:.3f} seconds")
            return result

        except Exception as e:
            execution_time = (datetime.now() - start_time).total_seconds()
            logger.error(f"{func.__name__} failed after {execution_time:.3f} seconds: {str(e)}")
            raise

    return wrapper
