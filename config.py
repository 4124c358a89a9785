"""
Configuration for the Park Smart backend.
Values come from the environment (a local .env file is loaded first).
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# Database connection settings
DB_HOST = os.environ.get('DB_HOST', '127.0.0.1')
DB_PORT = os.environ.get('DB_PORT', '5432')
DB_NAME = os.environ.get('DB_NAME', 'parking_db')
DB_USER = os.environ.get('DB_USER', 'parking_user')
DB_PASS = os.environ.get('DB_PASS', 'parking_password')

# Web server
PORT = int(os.environ.get('PORT', 5001))
SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-change-me')
SESSION_COOKIE_SECURE = _env_bool('SESSION_COOKIE_SECURE', False)
SESSION_LIFETIME_DAYS = int(os.environ.get('SESSION_LIFETIME_DAYS', 7))
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

# Billing
HOURLY_RATE = float(os.environ.get('HOURLY_RATE', 5))

# Camera uploads
UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', 'uploads/cam-uploads')
UPLOAD_URL_PREFIX = '/cam-uploads'

# OCR / image pre-processing
OCR_LANGUAGES = ['en']
OCR_GPU = _env_bool('OCR_GPU', True)
PLATE_CHAR_ALLOWLIST = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789- '
OCR_RESIZE_WIDTH = 800
OCR_THRESHOLD = 128

# Listing limits
HISTORY_LIMIT = 20
CAMERA_LOG_LIMIT = 50
MAX_BULK_SPOTS = 50
