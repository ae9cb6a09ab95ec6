"""Configuration module for the Love2Love sync backend."""

import logging
import os

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Suppress verbose logs from third-party libraries
logging.getLogger('httpx').setLevel(logging.INFO)
logging.getLogger('httpcore').setLevel(logging.INFO)
logging.getLogger('google').setLevel(logging.INFO)
logging.getLogger('urllib3').setLevel(logging.WARNING)
logging.getLogger('root').setLevel(logging.INFO)

logger = logging.getLogger(__name__)

# Environment variables
FIRESTORE_DATABASE_ID = os.getenv('FIRESTORE_DATABASE_ID')
FIREBASE_PROJECT_ID = os.getenv('FIREBASE_PROJECT_ID')
FUNCTIONS_REGION = os.getenv('FUNCTIONS_REGION', 'europe-west1')
FUNCTIONS_BASE_URL = os.getenv('FUNCTIONS_BASE_URL')
CALLABLE_TIMEOUT_SECONDS = float(os.getenv('CALLABLE_TIMEOUT_SECONDS', '70'))
DEFAULT_TIMEZONE = os.getenv('DEFAULT_TIMEZONE', 'Europe/Paris')
PREFERENCES_PATH = os.getenv('PREFERENCES_PATH', '.love2love_preferences.json')

# App configuration
APP_TITLE = "Love2Love Sync API"
APP_VERSION = "1.0.0"

# Product constants
FREE_DAY_LIMIT = 3  # content days visible without a subscription
CONTENT_WINDOW = 10  # most recent content documents watched per couple
FIRST_SNAPSHOT_TIMEOUT_SECONDS = 10.0
SYNC_CHECK_INTERVAL_SECONDS = 30.0  # day rollover and closed-stream checks
NOTIFICATION_PREVIEW_LENGTH = 100
DEFAULT_USER_NAME = "User"

# CORS configuration
CORS_ORIGINS = ["*"]
CORS_CREDENTIALS = True
CORS_METHODS = ["*"]
CORS_HEADERS = ["*"]


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


def get_functions_base_url() -> str:
    """Base URL of the HTTPS callable functions."""
    if FUNCTIONS_BASE_URL:
        return FUNCTIONS_BASE_URL.rstrip('/')
    if not FIREBASE_PROJECT_ID:
        logger.warning("FIREBASE_PROJECT_ID not set - callable functions will not be reachable")
    return f"https://{FUNCTIONS_REGION}-{FIREBASE_PROJECT_ID}.cloudfunctions.net"
