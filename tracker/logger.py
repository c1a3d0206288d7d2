import logging
import sys
from datetime import datetime, timezone


class CompanyFormatter(logging.Formatter):
    """
    Formats records as:
    [ Tue Jan 06 05:32:41 AM UTC 2026 ] : INFO : root : Message
    """
    def format(self, record):
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        timestamp = dt.strftime("%a %b %d %I:%M:%S %p UTC %Y")

        # Worker threads pass extra={"context": ...}; everything else is 'root'
        context = getattr(record, 'context', 'root')

        message = f"[ {timestamp} ] : {record.levelname} : {context} : {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logger(name="tracker", log_file=None, level=logging.INFO):
    """Sets up a logger with the company standard format."""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate handlers if setup_logger is called multiple times
    if logger.handlers:
        return logger

    # Child loggers propagate to the root 'tracker' logger
    if name != "tracker":
        logger.propagate = True
        setup_logger("tracker", log_file=log_file, level=level)
        return logger

    formatter = CompanyFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Only the root 'tracker' logger gets a FileHandler
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def add_file_handler(log_file, name="tracker"):
    """Attach a file handler after startup (the CLI decides the path late)."""
    logger = logging.getLogger(name)
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(log_file):
            return logger
    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(CompanyFormatter())
    logger.addHandler(file_handler)
    return logger


# Global logger instance
logger = setup_logger()
