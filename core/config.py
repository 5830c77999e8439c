# core/config.py
import os
from pydantic_settings import BaseSettings
from dotenv import load_dotenv
import logging

# Load variables from .env file located in the project root directory
dotenv_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)
else:
    load_dotenv() # Fallback

MIB = 1024 * 1024

class Settings(BaseSettings):
    """Loads configuration settings from environment variables and .env file."""

    # --- Supabase Configuration ---
    SUPABASE_URL: str | None = None
    SUPABASE_KEY: str | None = None # ANON key, used for the signed-in user's session
    SUPABASE_SERVICE_KEY: str | None = None # SERVICE_ROLE key, only needed for account deletion

    # --- Service URLs ---
    OAUTH_REDIRECT_URL: str = os.getenv("OAUTH_REDIRECT_URL", "http://localhost:8010/auth/callback")

    # --- Storage Configuration ---
    SAVE_STORAGE_BUCKET: str = "game-saves"
    SAVE_LOCATIONS_TABLE: str = "save_locations"
    RESUMABLE_CHUNK_SIZE: int = 6 * MIB # Supabase TUS endpoint only accepts 6MB chunks
    DOWNLOAD_URL_TTL: int = int(os.getenv("DOWNLOAD_URL_TTL", 3600)) # seconds

    # --- Quota Configuration ---
    MAX_FILE_SIZE: int = 20 * MIB
    USER_TOTAL_LIMIT: int = 50 * MIB
    AVATAR_MAX_SIZE: int = 5 * MIB
    DISPLAY_NAME_MAX_LENGTH: int = 50

    class Config:
        env_file = '.env'
        env_file_encoding = 'utf-8'
        extra = 'ignore'

# Instantiate settings once for import
settings = Settings()

# --- Logging Setup ---
log_level_str = os.getenv("LOG_LEVEL", "INFO").upper(); log_level = getattr(logging, log_level_str, logging.INFO)
logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - [%(levelname)s] - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
logger = logging.getLogger("GSM_Core")
logging.getLogger("httpx").setLevel(logging.WARNING); logging.getLogger("supabase").setLevel(logging.WARNING)
logging.getLogger("watchfiles").setLevel(logging.WARNING); logging.getLogger("hpack").setLevel(logging.WARNING)

# --- Configuration Validation Checks ---
logger.info(f"Core Settings loaded. Log Level: {log_level_str}")
if not settings.SUPABASE_URL or not settings.SUPABASE_KEY: logger.warning("Supabase URL/Key missing.")
if not settings.SUPABASE_SERVICE_KEY: logger.warning("Supabase Service Key missing. Account deletion will fail.")
if not settings.SAVE_STORAGE_BUCKET: logger.warning("SAVE_STORAGE_BUCKET missing, using default.")
else: logger.info(f"Using Supabase Storage Bucket: {settings.SAVE_STORAGE_BUCKET}")

try: assert 0 < settings.MAX_FILE_SIZE <= settings.USER_TOTAL_LIMIT; logger.info(f"Quota Config: Max File={settings.MAX_FILE_SIZE}, Account Total={settings.USER_TOTAL_LIMIT}")
except AssertionError: logger.error(f"Invalid quota settings: MAX_FILE_SIZE={settings.MAX_FILE_SIZE}, USER_TOTAL_LIMIT={settings.USER_TOTAL_LIMIT}.")
logger.info(f"Resumable Upload Config: Chunk Size={settings.RESUMABLE_CHUNK_SIZE}, Download URL TTL={settings.DOWNLOAD_URL_TTL}s")
