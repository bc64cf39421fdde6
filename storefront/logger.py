import logging

from rich.logging import RichHandler

from storefront import config


def get_logger(name=None) -> logging.Logger:
    """
    Return a logger that writes through a RichHandler.

    Handlers are attached once per name, so calling this at import time in
    every module is cheap.
    """
    if name is None:
        name = "storefront"
    logger = logging.getLogger(name)
    level = logging.getLevelName(config.LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        handler.setFormatter(logging.Formatter("[%(name)s]  %(message)s"))
        handler.setLevel(level)
        logger.addHandler(handler)
        logger.propagate = False

    return logger
