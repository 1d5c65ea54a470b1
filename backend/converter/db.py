"""Database layer for conversion history and batch job records. SQLite by default; set DATABASE_URL for another database.
Startup ensures required tables exist; on connection failure logs verbosely and falls back to in-memory SQLite so the app can start."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from converter import config as app_config

logger = logging.getLogger("converter.db")

# Tables required for the app (created at startup if missing)
REQUIRED_TABLES = ("conversions", "batches")
IN_MEMORY_URL = "sqlite:///:memory:"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


_CONVERSION_COLUMNS = (
    "id, batch_id, source_name, from_format, to_format, width, height, original_size, "
    "converted_size, compression_ratio, conversion_time_ms, simulated, converted_at"
)


def _conversion_row(r) -> dict:
    return {
        "id": r[0],
        "batch_id": r[1],
        "source_name": r[2],
        "from_format": r[3],
        "to_format": r[4],
        "width": r[5],
        "height": r[6],
        "original_size": r[7],
        "converted_size": r[8],
        "compression_ratio": r[9],
        "conversion_time_ms": r[10],
        "simulated": bool(r[11]),
        "converted_at": r[12],
    }


def _make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        if ":memory:" in url or url == "sqlite://":
            # One shared connection, otherwise every connection gets its own empty database
            return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
        db_file = url.split("///", 1)[-1]
        Path(db_file).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


class HistoryStore:
    """Persists what was converted and how batches ended. Performance reports are never stored."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or app_config.DATABASE_URL
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = _make_engine(self.url)
            logger.info("Database engine created (%s)", self.url.split(":", 1)[0])
        return self._engine

    def init(self) -> None:
        """Ensure required tables exist. On failure, fall back to in-memory SQLite so the app can start."""
        try:
            self._ensure_tables()
            logger.info("Database ready: %s", ", ".join(REQUIRED_TABLES))
            return
        except Exception as e:
            logger.exception("Database init failed: %s. Trying in-memory SQLite.", e)
        self.url = IN_MEMORY_URL
        self._engine = None
        self._ensure_tables()
        logger.warning("Database unavailable. Using in-memory SQLite. History will not persist across restarts.")

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def _ensure_tables(self) -> None:
        with self.session() as conn:
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS conversions (
                    id VARCHAR(64) PRIMARY KEY,
                    batch_id VARCHAR(64),
                    source_name VARCHAR(512),
                    from_format VARCHAR(16) NOT NULL,
                    to_format VARCHAR(16) NOT NULL,
                    width INTEGER,
                    height INTEGER,
                    original_size BIGINT,
                    converted_size BIGINT,
                    compression_ratio FLOAT,
                    conversion_time_ms FLOAT,
                    simulated INTEGER NOT NULL DEFAULT 0,
                    converted_at VARCHAR(50) NOT NULL
                )
            """))
            conn.execute(text("""
                CREATE TABLE IF NOT EXISTS batches (
                    batch_id VARCHAR(64) PRIMARY KEY,
                    status VARCHAR(20) NOT NULL,
                    total_operations INTEGER NOT NULL DEFAULT 0,
                    completed_operations INTEGER NOT NULL DEFAULT 0,
                    progress FLOAT NOT NULL DEFAULT 0,
                    error TEXT,
                    created_at VARCHAR(50) NOT NULL,
                    updated_at VARCHAR(50) NOT NULL
                )
            """))

    @contextmanager
    def session(self):
        with self.engine.connect() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def record_conversion(self, image, batch_id: Optional[str] = None) -> None:
        params = {
            "id": image.id,
            "batch_id": batch_id,
            "source_name": image.source_name,
            "from_format": image.from_format.value,
            "to_format": image.to_format.value,
            "width": image.width,
            "height": image.height,
            "original_size": image.original_size,
            "converted_size": image.converted_size,
            "compression_ratio": image.compression_ratio,
            "conversion_time_ms": image.conversion_time_ms,
            "simulated": int(image.simulated),
            "converted_at": image.converted_at.isoformat(),
        }
        with self.session() as conn:
            conn.execute(
                text("""
                    INSERT INTO conversions (id, batch_id, source_name, from_format, to_format, width, height, original_size, converted_size, compression_ratio, conversion_time_ms, simulated, converted_at)
                    VALUES (:id, :batch_id, :source_name, :from_format, :to_format, :width, :height, :original_size, :converted_size, :compression_ratio, :conversion_time_ms, :simulated, :converted_at)
                """),
                params,
            )

    def get_stats(self) -> dict:
        """Aggregate stats: conversions, total_input_bytes, total_output_bytes, compression_percent, time_spent_ms, per-format counts."""
        with self.engine.connect() as conn:
            row = conn.execute(text("""
                SELECT
                    COUNT(*) AS conversions,
                    COALESCE(SUM(original_size), 0) AS total_input_bytes,
                    COALESCE(SUM(converted_size), 0) AS total_output_bytes,
                    COALESCE(SUM(conversion_time_ms), 0) AS time_spent_ms
                FROM conversions
            """)).fetchone()
            by_format = conn.execute(text("""
                SELECT to_format, COUNT(*), COALESCE(AVG(compression_ratio), 0), COALESCE(AVG(conversion_time_ms), 0)
                FROM conversions GROUP BY to_format ORDER BY to_format
            """)).fetchall()
        if not row or row[0] == 0:
            return {
                "conversions": 0,
                "total_input_bytes": 0,
                "total_output_bytes": 0,
                "compression_percent": 0.0,
                "time_spent_ms": 0.0,
                "formats": [],
            }
        total_input = int(row[1])
        total_output = int(row[2])
        compression_percent = 0.0
        if total_input > 0:
            compression_percent = round((1.0 - total_output / total_input) * 100.0, 1)
        return {
            "conversions": int(row[0]),
            "total_input_bytes": total_input,
            "total_output_bytes": total_output,
            "compression_percent": compression_percent,
            "time_spent_ms": float(row[3]),
            "formats": [
                {
                    "format": r[0],
                    "conversions": int(r[1]),
                    "average_compression_ratio": float(r[2]),
                    "average_time_ms": float(r[3]),
                }
                for r in by_format
            ],
        }

    def recent_conversions(self, limit: int = 50) -> list[dict]:
        """Recent conversions, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(f"SELECT {_CONVERSION_COLUMNS} FROM conversions ORDER BY converted_at DESC LIMIT :lim"),
                {"lim": limit},
            ).fetchall()
        return [_conversion_row(r) for r in rows]

    def batch_conversions(self, batch_id: str) -> list[dict]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(f"SELECT {_CONVERSION_COLUMNS} FROM conversions WHERE batch_id = :batch_id ORDER BY converted_at"),
                {"batch_id": batch_id},
            ).fetchall()
        return [_conversion_row(r) for r in rows]

    def clear_history(self) -> int:
        with self.session() as conn:
            deleted = conn.execute(text("DELETE FROM conversions")).rowcount
        return deleted or 0

    def save_batch(self, job) -> None:
        now = _now_iso()
        params = {**job.to_dict(), "now": now}
        with self.session() as conn:
            conn.execute(text("DELETE FROM batches WHERE batch_id = :batch_id"), params)
            conn.execute(
                text("""
                    INSERT INTO batches (batch_id, status, total_operations, completed_operations, progress, error, created_at, updated_at)
                    VALUES (:batch_id, :status, :total_operations, :completed_operations, :progress, :error, :now, :now)
                """),
                params,
            )

    def update_batch(self, job) -> None:
        params = {**job.to_dict(), "now": _now_iso()}
        with self.session() as conn:
            conn.execute(
                text("""
                    UPDATE batches SET status = :status, total_operations = :total_operations,
                        completed_operations = :completed_operations, progress = :progress,
                        error = :error, updated_at = :now
                    WHERE batch_id = :batch_id
                """),
                params,
            )

    def get_batch(self, batch_id: str) -> Optional[dict]:
        """Return batch row as dict or None. Used when the batch is not in memory (e.g. after restart)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT batch_id, status, total_operations, completed_operations, progress, error FROM batches WHERE batch_id = :id"),
                {"id": batch_id},
            ).fetchone()
        if not row:
            return None
        return {
            "batch_id": row[0],
            "status": row[1],
            "total_operations": int(row[2]),
            "completed_operations": int(row[3]),
            "progress": float(row[4]),
            "error": row[5],
        }
