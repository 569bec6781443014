# campusreads/core/config.py
import os
import sys
import logging
from pathlib import Path
from typing import List, Set

from dotenv import load_dotenv
from loguru import logger

# --- Load .env from the project root if present ---
project_root = Path(__file__).resolve().parent.parent.parent
dotenv_path = project_root / ".env"
if dotenv_path.is_file():
    logger.debug(f"Loading environment variables from: {dotenv_path}")
    load_dotenv(dotenv_path=dotenv_path)
else:
    logger.debug(f".env file not found at {dotenv_path}. Relying on system environment variables.")


class InterceptHandler(logging.Handler):
    """Routes standard library log records into Loguru."""
    def emit(self, record: logging.LogRecord) -> None:
        try: level = logger.level(record.levelname).name
        except ValueError: level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}. Using default: {default}.")
        return default


def _env_list(name: str, default: str) -> List[str]:
    return [part.strip() for part in os.getenv(name, default).split(",") if part.strip()]


def setup_logging():
    """Configure Loguru sinks and intercept stdlib/uvicorn logging."""
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()

    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )
    log_file_path = Path(os.getenv("LOG_FILE_PATH", "logs/campusreads_{time:YYYY-MM-DD}.log"))
    log_rotation = os.getenv("LOG_ROTATION", "1 day")
    log_retention = os.getenv("LOG_RETENTION", "7 days")
    log_serialize = _env_bool("LOG_SERIALIZE", "false")

    logger.remove()
    logger.add(sys.stderr, level=log_level_name, format=log_format, colorize=True)

    if _env_bool("LOG_TO_FILE", "true"):
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                log_file_path,
                level=log_level_name,
                format=log_format,
                rotation=log_rotation,
                retention=log_retention,
                serialize=log_serialize,
                enqueue=True,
                backtrace=True,
                diagnose=False,
                encoding="utf-8",
            )
            logger.info(f"File logging enabled at: {log_file_path}")
        except Exception as e:
            logger.error(f"Failed to setup file logging at {log_file_path}: {e}")

    # Root logger at level 0 so every record reaches the interceptor
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith(("uvicorn", "fastapi", "starlette", "apscheduler")):
            std_logger = logging.getLogger(name)
            std_logger.handlers = [InterceptHandler()]
            std_logger.propagate = False

    logger.info(f"Loguru logging setup complete. Level: {log_level_name}")


# --- JWT ---
SECRET_KEY: str = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    logger.critical("FATAL: SECRET_KEY environment variable is not set.")
    raise ValueError("SECRET_KEY environment variable is not set.")

ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES: int = _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60)

# --- Database ---
MONGODB_URL: str = os.getenv("MONGODB_URL")
if not MONGODB_URL:
    logger.critical("FATAL: MONGODB_URL environment variable is not set.")
    raise ValueError("MONGODB_URL environment variable is not set.")

_default_db_name = "campusreads"
_path_part = MONGODB_URL.rsplit("/", 1)[-1].split("?")[0] if MONGODB_URL.count("/") >= 3 else ""
if _path_part:
    _default_db_name = _path_part
DATABASE_NAME: str = os.getenv("DATABASE_NAME", _default_db_name)

# Multi-document transactions need a replica set; off for standalone servers
MONGODB_TRANSACTIONS: bool = _env_bool("MONGODB_TRANSACTIONS", "false")

# --- Sign-up ---
ALLOWED_EMAIL_DOMAIN: str = os.getenv("ALLOWED_EMAIL_DOMAIN", "iitr.ac.in").strip().lower()

# --- Media ---
MEDIA_ROOT: Path = Path(os.getenv("MEDIA_ROOT", str(project_root / "media")))
MEDIA_BASE_URL: str = os.getenv("MEDIA_BASE_URL", "/media").rstrip("/")
MAX_UPLOAD_BYTES: int = _env_int("MAX_UPLOAD_BYTES", 5 * 1024 * 1024)
ALLOWED_IMAGE_TYPES: Set[str] = set(_env_list("ALLOWED_IMAGE_TYPES", "image/jpeg,image/png,image/webp,image/gif"))
ORPHAN_MEDIA_GRACE_HOURS: int = _env_int("ORPHAN_MEDIA_GRACE_HOURS", 24)
ORPHAN_PURGE_INTERVAL_HOURS: int = _env_int("ORPHAN_PURGE_INTERVAL_HOURS", 6)

# --- HTTP ---
RATE_LIMIT_ENABLED: bool = _env_bool("RATE_LIMIT_ENABLED", "true")
CORS_ORIGINS: List[str] = _env_list("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "Asia/Kolkata")

logger.debug(f"JWT Algorithm: {ALGORITHM}")
logger.debug(f"Access Token Expire Minutes: {ACCESS_TOKEN_EXPIRE_MINUTES}")
logger.debug(f"Database Name: {DATABASE_NAME} (transactions: {MONGODB_TRANSACTIONS})")
logger.debug(f"Media root: {MEDIA_ROOT}")
