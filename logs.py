import logging
import os
from datetime import datetime

log_formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")

logger = logging.getLogger()

_log_dir = "logs"
_max_log_lines = 5000
_latest_log_path = None
log_file_handler = None
log_line_count = 0


def setup_logging(logging_dir: str = "logs", max_log_lines: int = 5000, debug: bool = False):
    global _log_dir, _max_log_lines, _latest_log_path, log_file_handler, log_line_count

    _log_dir = logging_dir
    _max_log_lines = max_log_lines
    os.makedirs(_log_dir, exist_ok=True)
    _latest_log_path = os.path.join(_log_dir, "latest.log")

    if os.path.exists(_latest_log_path):
        with open(_latest_log_path, "r", encoding="utf-8") as f:
            log_line_count = sum(1 for _ in f)
    else:
        log_line_count = 0
        with open(_latest_log_path, "w", encoding="utf-8"):
            pass

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    log_file_handler = logging.FileHandler(_latest_log_path, mode='a', encoding='utf-8')
    log_file_handler.setFormatter(log_formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_formatter)

    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.addHandler(log_file_handler)
    logger.addHandler(console_handler)


def _rotate():
    global log_file_handler, log_line_count

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    rotated_path = os.path.join(_log_dir, f"{timestamp}.log")

    log_file_handler.close()
    os.rename(_latest_log_path, rotated_path)

    #start fresh log
    new_handler = logging.FileHandler(_latest_log_path, mode='a', encoding='utf-8')
    new_handler.setFormatter(log_formatter)

    logger.removeHandler(log_file_handler)
    logger.addHandler(new_handler)
    log_file_handler = new_handler
    log_line_count = 0


def log_and_rotate(message: str, level=logging.INFO):
    global log_line_count

    logger.log(level, message)

    # file logging is only active once setup_logging ran
    if log_file_handler is None or not logger.isEnabledFor(level):
        return

    log_line_count += 1
    if log_line_count >= _max_log_lines:
        _rotate()

def log_debug(msg): log_and_rotate(msg, logging.DEBUG)
def log_info(msg): log_and_rotate(msg)
def log_warning(msg): log_and_rotate(msg, logging.WARNING)
def log_error(msg): log_and_rotate(msg, logging.ERROR)
