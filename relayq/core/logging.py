# relayq/core/logging.py
import logging
import os
import sys
from datetime import datetime


def _level_from_env() -> int:
    level = logging.getLevelName(os.environ.get('RELAYQ_LOG_LEVEL', 'INFO').upper())
    return level if isinstance(level, int) else logging.INFO


# Level applied to loggers created after set_default_level() is called
_default_level: int = _level_from_env()


class ColoredFormatter(logging.Formatter):
    """Tabular colored formatter: [time] [component] [level] message"""

    COLORS = {
        'RESET': '\033[0m',
        'LIGHT_BLUE': '\033[94m',
        'WHITE': '\033[97m',
        'GRAY': '\033[90m',
        'GREEN': '\033[92m',
        'YELLOW': '\033[93m',
        'RED': '\033[91m',
        'BRIGHT_RED': '\033[1;91m',
    }

    LEVEL_COLORS = {
        'DEBUG': COLORS['GRAY'],
        'INFO': COLORS['GREEN'],
        'WARNING': COLORS['YELLOW'],
        'ERROR': COLORS['RED'],
        'CRITICAL': COLORS['BRIGHT_RED'],
    }

    def format(self, record: logging.LogRecord) -> str:
        time_str = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')

        # 'relayq.worker' -> 'worker', 'relayq.tasks.mailing' -> 'mailing'
        component = record.name.rsplit('.', 1)[-1]

        # [secret_messaging] is the widest component tag
        component_padded = f'[{component}]'.ljust(20)
        level_padded = f'[{record.levelname}]'.ljust(10)

        c = self.COLORS
        level_color = self.LEVEL_COLORS.get(record.levelname, c['WHITE'])
        formatted = (
            f"{c['LIGHT_BLUE']}[{time_str}]{c['RESET']} "
            f"{c['WHITE']}{component_padded}{c['RESET']}"
            f"{level_color}{level_padded}{c['RESET']}"
            f"{c['WHITE']}{record.getMessage()}{c['RESET']}"
        )

        if record.exc_info:
            formatted += '\n' + self.formatException(record.exc_info)

        return formatted


def set_default_level(level: int) -> None:
    """Set the level for loggers created from now on."""
    global _default_level
    _default_level = level


def get_logger(component_name: str) -> logging.Logger:
    """Get the `relayq.<component_name>` logger, configuring it on first use."""
    logger = logging.getLogger(f'relayq.{component_name}')

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(ColoredFormatter())
        handler.setLevel(_default_level)
        logger.addHandler(handler)
        logger.setLevel(_default_level)

        # Prevent duplicate lines through the root logger
        logger.propagate = False

    return logger
