"""
Logging Setup for gifconform
Initializes logging configuration from YAML file
"""

import copy
import os
import logging
import logging.config
import yaml
from colorama import init, Fore, Style
from typing import Any, Dict, Optional

# Initialize colorama for Windows compatibility
init(autoreset=True)

ROOT_LOGGER_NAME = 'gifconform'

DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'detailed': {
            'format': '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'console': {
            'format': '%(asctime)s | %(levelname)-8s | %(message)s',
            'datefmt': '%H:%M:%S'
        }
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'level': 'WARNING',
            'formatter': 'console',
            'stream': 'ext://sys.stdout'
        },
        'file': {
            'class': 'logging.FileHandler',
            'level': 'DEBUG',
            'formatter': 'detailed',
            'filename': 'logs/gifconform.log',
            'mode': 'a'
        },
        'error_file': {
            'class': 'logging.FileHandler',
            'level': 'ERROR',
            'formatter': 'detailed',
            'filename': 'logs/errors.log',
            'mode': 'a'
        }
    },
    'root': {
        'level': 'DEBUG',
        'handlers': ['console', 'file', 'error_file']
    }
}


class ColoredFormatter(logging.Formatter):
    """Custom formatter to add colors to console output"""

    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.MAGENTA + Style.BRIGHT,
    }

    def format(self, record):
        # Color a copy so file handlers sharing the record keep plain level names
        record = copy.copy(record)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{Style.RESET_ALL}"
        return super().format(record)


def _load_logging_config(config_path: Optional[str]) -> Dict[str, Any]:
    if config_path and os.path.exists(config_path):
        with open(config_path, 'r', encoding='utf-8') as file:
            config_data = yaml.safe_load(file) or {}
        return config_data.get('logging', copy.deepcopy(DEFAULT_LOGGING_CONFIG))
    packaged_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'config', 'logging.yaml')
    if os.path.exists(packaged_path):
        with open(packaged_path, 'r', encoding='utf-8') as file:
            config_data = yaml.safe_load(file) or {}
        return config_data.get('logging', copy.deepcopy(DEFAULT_LOGGING_CONFIG))
    return copy.deepcopy(DEFAULT_LOGGING_CONFIG)


def setup_logging(config_path: Optional[str] = "config/logging.yaml", log_level: Optional[str] = None,
                  logs_dir: str = "logs") -> logging.Logger:
    """
    Setup logging configuration from YAML file

    Args:
        config_path: Path to logging configuration file (packaged default when missing)
        log_level: Override console/root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logs_dir: Directory that file handlers write into
    """
    os.makedirs(logs_dir, exist_ok=True)

    try:
        logging_config = _load_logging_config(config_path)

        # Point file handlers into logs_dir
        for handler in logging_config.get('handlers', {}).values():
            filename = handler.get('filename')
            if filename:
                handler['filename'] = os.path.join(logs_dir, os.path.basename(filename))

        # Root stays at DEBUG so the file handler captures everything
        if 'root' in logging_config:
            logging_config['root']['level'] = 'DEBUG'

        # Override console level if an explicit log_level was provided (e.g., --debug)
        if log_level:
            log_level = log_level.upper()
            if 'console' in logging_config.get('handlers', {}):
                logging_config['handlers']['console']['level'] = log_level

        logging.config.dictConfig(logging_config)
    except (OSError, ValueError, TypeError, AttributeError, yaml.YAMLError) as config_error:
        # If dictConfig fails, fall back to basic configuration
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%H:%M:%S'
        )
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        logger.error(f"Failed to apply logging configuration: {config_error}")
        logger.info("Using basic logging configuration as fallback")
        return logger

    logger = logging.getLogger(ROOT_LOGGER_NAME)

    # Colored formatter on the stdout console handler
    for handler in logging.getLogger().handlers:
        if type(handler) is logging.StreamHandler and getattr(handler.stream, 'name', None) == '<stdout>':
            handler.setFormatter(ColoredFormatter(
                fmt='%(asctime)s | %(levelname)-8s | %(message)s',
                datefmt='%H:%M:%S'
            ))

    logger.info("Logging initialized")
    return logger


def get_logger(name: str = None) -> logging.Logger:
    """Get a logger instance"""
    if name:
        return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')
    return logging.getLogger(ROOT_LOGGER_NAME)
