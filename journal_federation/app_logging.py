"""Root logger setup for a journal instance."""

import logging

from pythonjsonlogger.json import JsonFormatter

FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def setup_logger(level: str = 'INFO', json_logs: bool = True) -> None:
    """
    Attach a single stream handler to the root logger.

    With ``json_logs`` each record is a JSON object with ``timestamp``,
    ``level``, ``name`` and ``message`` fields, plus any ``extra`` fields
    passed by the caller (e.g. ``remote_url`` and ``reason`` on failed calls
    to peers).
    """
    log_handler = logging.StreamHandler()
    if json_logs:
        formatter: logging.Formatter = JsonFormatter(
            FORMAT,
            rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
        )
    else:
        formatter = logging.Formatter(FORMAT)
    log_handler.setFormatter(formatter)
    logger = logging.getLogger()
    for handler in list(logger.handlers):
        if getattr(handler, '_journal_federation', False):
            logger.removeHandler(handler)
    log_handler._journal_federation = True   # type: ignore
    logger.addHandler(log_handler)
    logger.setLevel(level)
