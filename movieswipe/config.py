# movieswipe/config.py
import os
import logging
from dotenv import load_dotenv

# --- Load .env from the project root ---
# Real environment variables win over the .env file
script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(script_dir)
dotenv_path = os.path.join(project_root, '.env')
load_dotenv(dotenv_path=dotenv_path)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))

DEFAULT_DATABASE_URL = "sqlite:///./movieswipe.db"
DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

# --- Movie catalog (TMDB) ---
TMDB_API_KEY = os.getenv("TMDB_API_KEY", "")
TMDB_BASE_URL = os.getenv("TMDB_BASE_URL", "https://api.themoviedb.org/3")
TMDB_IMAGE_BASE_URL = os.getenv("TMDB_IMAGE_BASE_URL", "https://image.tmdb.org/t/p/w500")
TMDB_TIMEOUT = float(os.getenv("TMDB_TIMEOUT", "10"))
TMDB_MAX_RETRIES = int(os.getenv("TMDB_MAX_RETRIES", "2"))
TMDB_CACHE_TTL = int(os.getenv("TMDB_CACHE_TTL", "600"))
TMDB_CACHE_MAX_ENTRIES = int(os.getenv("TMDB_CACHE_MAX_ENTRIES", "1000"))

# --- Group / recommendation policy ---
MAX_GROUPS_PER_USER = int(os.getenv("MAX_GROUPS_PER_USER", "10"))
TOP_GENRES_LIMIT = int(os.getenv("TOP_GENRES_LIMIT", "5"))
DEFAULT_RECOMMENDATIONS = int(os.getenv("DEFAULT_RECOMMENDATIONS", "10"))
MAX_RECOMMENDATIONS = 50

# --- Rate limits (slowapi syntax) ---
RECOMMENDATIONS_RATE_LIMIT = os.getenv("RECOMMENDATIONS_RATE_LIMIT", "10/minute")
SESSION_CREATE_RATE_LIMIT = os.getenv("SESSION_CREATE_RATE_LIMIT", "10/minute")
VOTE_RATE_LIMIT = os.getenv("VOTE_RATE_LIMIT", "120/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("1", "true", "yes")
