import os
import logging
import sys
import uvicorn


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colors to log output."""

    # ANSI color codes
    grey = "\x1b[38;21m"
    green = "\x1b[32m"
    yellow = "\x1b[33m"
    red = "\x1b[31m"
    bold_red = "\x1b[31;1m"
    orange = "\x1b[38;5;208m"  # Timestamp color
    reset = "\x1b[0m"

    COLORS = {
        logging.DEBUG: grey,
        logging.INFO: green,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red
    }

    def format(self, record):
        formatted = super().format(record)

        # Only colorize if outputting to terminal
        if sys.stdout.isatty():
            log_color = self.COLORS.get(record.levelno, self.grey)

            # Format is: "timestamp - LEVEL - name - message"
            parts = formatted.split(' - ', 3)
            if len(parts) >= 3:
                timestamp = parts[0]
                level = parts[1]
                rest = ' - '.join(parts[2:])
                formatted = f"{self.orange}{timestamp}{self.reset} - {log_color}{level}{self.reset} - {rest}"

        return formatted


# Setup logging with colors and datetime
def setup_logging():
    """Configure logging with colors and datetime."""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter(
        '%(asctime)s - %(levelname)-8s - %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    root.addHandler(handler)
    root.setLevel(logging.WARNING)  # Default to WARNING to avoid verbose logs

    # uvicorn access and error logs share our colored handler
    for name in ("uvicorn.access", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(handler)
        uvicorn_logger.setLevel(logging.INFO)


# Configure logging
setup_logging()

# Realtime modules follow WEBSOCKET_LOG_LEVEL, the rest of the backend stays at WARNING
REALTIME_LOGGER = "skycrm_backend.websocket"
BACKEND_LOGGER = "skycrm_backend"


def configure_module_logging():
    """Configure module logging based on environment variables."""
    ws_log_level = os.environ.get("WEBSOCKET_LOG_LEVEL", "WARNING").upper()

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if ws_log_level not in valid_levels:
        ws_log_level = "WARNING"

    # Child loggers (router, connection_manager, rooms, ...) inherit from the package logger
    logging.getLogger(BACKEND_LOGGER).setLevel(logging.WARNING)
    logging.getLogger(REALTIME_LOGGER).setLevel(getattr(logging, ws_log_level))

    # Suppress access logs in quiet mode
    if ws_log_level in ["ERROR", "CRITICAL"]:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return ws_log_level


if __name__ == "__main__":
    ws_level = configure_module_logging()

    # Default to "info" to always show HTTP requests unless explicitly set otherwise
    uvicorn_log_level = os.environ.get("UVICORN_LOG_LEVEL", "info").lower()

    print(f"Starting SkyCRM realtime hub with WebSocket log level: {ws_level}, Uvicorn log level: {uvicorn_log_level}")

    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "colored": {
                "()": ColoredFormatter,
                "fmt": "%(asctime)s - %(levelname)-8s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "colored",
                "stream": "ext://sys.stdout"
            },
        },
        "loggers": {
            "uvicorn": {
                "handlers": ["default"],
                "level": uvicorn_log_level.upper(),
                "propagate": False
            },
            "uvicorn.error": {
                "handlers": ["default"],
                "level": uvicorn_log_level.upper(),
                "propagate": False
            },
            "uvicorn.access": {
                "handlers": ["default"],
                "level": "INFO" if uvicorn_log_level != "error" else "WARNING",
                "propagate": False
            }
        }
    }

    # One worker: room membership lives in process, scale out with REDIS_URL
    uvicorn.run(
        "skycrm_backend.server:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        log_config=log_config,
        workers=1
    )
