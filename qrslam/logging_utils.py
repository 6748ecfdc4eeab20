import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(session)s] %(message)s"


class SessionNameFilter(logging.Filter):
    def __init__(self, session_name: str):
        super().__init__()
        self.session_name = session_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.session = self.session_name
        return True


def setup_logger(session_name: str, level: int = logging.INFO) -> logging.Logger:
    """Session logger under the ``qrslam`` namespace.

    Module loggers (``qrslam.marker_map`` etc.) propagate here, so their
    records get the same handlers and session tag. Calling it again retags
    the console handler with the new session name.
    """
    logger = logging.getLogger("qrslam")
    logger.setLevel(level)

    console = [
        h for h in logger.handlers
        if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
    ]
    if not console:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        console = [handler]

    for handler in console:
        for old in [f for f in handler.filters if isinstance(f, SessionNameFilter)]:
            handler.removeFilter(old)
        handler.addFilter(SessionNameFilter(session_name))

    return logger


def add_file_handler(logger: logging.Logger, session_name: str, log_path: str) -> logging.Handler:
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(SessionNameFilter(session_name))
    logger.addHandler(handler)
    return handler
