import functools
import asyncio
import logging
import sys


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def async_click(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


def setup_logging(verbose: bool = False) -> logging.Logger:
    """
    Настраивает корневой логгер пакета fakeci: один поток в stderr,
    INFO по умолчанию и DEBUG (вывод команд) с --verbose.
    """
    logger = logging.getLogger("fakeci")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(stream_handler)
    return logger
