# app/logging_config.py

import logging
import os
from datetime import datetime

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
os.makedirs(LOG_DIR, exist_ok=True)

# one file per day: logs/clarify_2024-05-01.log
log_file = os.path.join(LOG_DIR, f"clarify_{datetime.now().strftime('%Y-%m-%d')}.log")

logger = logging.getLogger("clarify-logger")
logger.setLevel(LOG_LEVEL)

formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

if not logger.handlers:
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(LOG_LEVEL)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if os.getenv("LOG_TO_CONSOLE", "").lower() in ("1", "true", "yes"):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

logger.propagate = False  # keep uvicorn's handlers out of it
