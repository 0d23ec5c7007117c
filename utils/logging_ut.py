import logging
import sys

def setup_logging(level: str = "INFO") -> None:
    """
    Base logging: [TIME] [LEVEL] [LOGGER]: MESSAGE
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    # SDK transports are chatty at INFO (every HTTP request/response)
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
