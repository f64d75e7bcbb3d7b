import logging
import os

LOG_DIR = os.path.abspath(os.environ.get('MODSTEMS_LOG_DIR', os.path.join(os.getcwd(), 'logs')))
LOG_FILE = os.path.join(LOG_DIR, 'modstems.log')

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'

# Parent of every stem_engine.* module logger
logger = logging.getLogger('stem_engine')


def setup_logging(level: int = logging.INFO, log_file: str = None) -> logging.Logger:
    """Attach a console handler and, optionally, a file handler."""
    formatter = logging.Formatter(LOG_FORMAT)
    logger.setLevel(level)

    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(formatter)
        logger.addHandler(sh)

    if log_file:
        log_file = os.path.abspath(log_file)
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        if not any(isinstance(h, logging.FileHandler) and h.baseFilename == log_file
                   for h in logger.handlers):
            fh = logging.FileHandler(log_file, encoding='utf-8')
            fh.setFormatter(formatter)
            logger.addHandler(fh)

    for handler in logger.handlers:
        handler.setLevel(level)
    return logger


# Convenience function
def get_logger():
    return logger
