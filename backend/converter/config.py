"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Paths (override with env)
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(BASE_DIR / "outputs")))

# Codec engine: "module:factory" import path, and what to do when it cannot be loaded
ENGINE_PATH = os.getenv("ENGINE_PATH", "converter.engine.pillow:PillowCodecEngine").strip()
ENGINE_FALLBACK = os.getenv("ENGINE_FALLBACK", "simulated").strip().lower()

# Simulated engine (demonstration only)
_seed = os.getenv("SIMULATION_SEED", "").strip()
SIMULATION_SEED = int(_seed) if _seed else None
SIMULATION_MIN_DELAY = float(os.getenv("SIMULATION_MIN_DELAY", "0.2"))
SIMULATION_MAX_DELAY = float(os.getenv("SIMULATION_MAX_DELAY", "0.5"))

# Telemetry
TELEMETRY_INTERVAL_SECONDS = float(os.getenv("TELEMETRY_INTERVAL_SECONDS", "1.0"))
TELEMETRY_HISTORY_LIMIT = int(os.getenv("TELEMETRY_HISTORY_LIMIT", "100"))

# Database – SQLite by default. Any SQLAlchemy URL works (tables use portable types).
DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
if not DATABASE_URL:
    db_path = BASE_DIR / "data" / "converter.db"
    DATABASE_URL = f"sqlite:///{db_path}"

# Limits (env)
MAX_IMAGE_SIZE_MB = int(os.getenv("MAX_IMAGE_SIZE_MB", "20"))
MAX_IMAGE_SIZE_BYTES = MAX_IMAGE_SIZE_MB * 1024 * 1024
MAX_BATCH_INPUTS = int(os.getenv("MAX_BATCH_INPUTS", "10"))

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:5173,http://127.0.0.1:5173"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("converter")
