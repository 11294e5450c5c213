import logging
from logging.handlers import RotatingFileHandler
import os


def setup_logging(log_dir=None):
    # Log file (absolute path, defaults to <project>/logs/app.log)
    log_dir = log_dir or os.getenv(
        "LOG_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs")
    )
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, "app.log")

    # Formatter shared by file and console
    log_formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # --- Root logger ---
    app_logger = logging.getLogger()
    app_logger.setLevel(logging.INFO)

    # Console handler (avoid adding twice)
    if not any(isinstance(h, logging.StreamHandler) for h in app_logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(log_formatter)
        app_logger.addHandler(console_handler)

    # --- Auto-sync thread logger, also written to its own file ---
    cronjob_logger = logging.getLogger("cronjob")
    cronjob_logger.setLevel(logging.INFO)
    cron_file = os.path.join(log_dir, "auto_sync.log")

    if not any(
        isinstance(h, RotatingFileHandler) and h.baseFilename == cron_file
        for h in cronjob_logger.handlers
    ):
        file_handler = RotatingFileHandler(
            cron_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(log_formatter)
        cronjob_logger.addHandler(file_handler)

    # Everything else (install_logger, sync_logger, Flask) goes to app.log
    if not any(
        isinstance(h, RotatingFileHandler) and h.baseFilename == log_file
        for h in app_logger.handlers
    ):
        file_handler_main = RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5
        )
        file_handler_main.setFormatter(log_formatter)
        app_logger.addHandler(file_handler_main)

    # Keep werkzeug request lines out of the way
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    # paramiko logs every transport negotiation at INFO
    logging.getLogger("paramiko").setLevel(logging.WARNING)
