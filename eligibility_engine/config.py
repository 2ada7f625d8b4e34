"""Environment-driven settings for the eligibility engine."""

import logging
import os
import sys
from typing import List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


RECORD_STORE_URL = os.getenv('RECORD_STORE_URL', 'https://api.olimpustech.com')
RECORD_STORE_TOKEN = os.getenv('RECORD_STORE_TOKEN') or None
RECORD_STORE_TIMEOUT = float(os.getenv('RECORD_STORE_TIMEOUT', '600'))

USE_STATISTICS_ENDPOINT = _env_bool('USE_STATISTICS_ENDPOINT', 'true')
EXPIRATION_WARNING_DAYS = int(os.getenv('EXPIRATION_WARNING_DAYS', '30'))

SESSION_MAX_COUNT = int(os.getenv('SESSION_MAX_COUNT', '1000'))
SESSION_IDLE_SECONDS = float(os.getenv('SESSION_IDLE_SECONDS', '3600'))

ALLOW_ORIGINS: List[str] = [o.strip() for o in os.getenv('ALLOW_ORIGINS', '*').split(',')]
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
DEBUG = _env_bool('DEBUG', 'false')


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
