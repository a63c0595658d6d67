"""Application configuration loaded from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent.parent


class Settings:
    # SQLite DB URL
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'tally_migration.db'}"
    )

    # API server
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "logs/migration.log")
    # Only lines logged inside an import or rollback, tagged with the batch number
    AUDIT_LOG_FILE: str = os.getenv("AUDIT_LOG_FILE", "logs/batches.log")

    # CORS
    CORS_ORIGINS: list[str] = [
        o.strip()
        for o in os.getenv(
            "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
        ).split(",")
    ]

    # Largest accepted export
    MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "200"))

    # Directory for raw export backups
    RAW_BACKUP_DIR: Path = Path(
        os.getenv("RAW_BACKUP_DIR", str(BASE_DIR / "data" / "raw_backup"))
    )

    # Validation thresholds
    UNBALANCED_TOLERANCE: float = float(os.getenv("UNBALANCED_TOLERANCE", "0.01"))
    STALE_VOUCHER_YEARS: int = int(os.getenv("STALE_VOUCHER_YEARS", "10"))

    # Invoice due date when the export carries no bill-wise credit period
    DEFAULT_CREDIT_DAYS: int = int(os.getenv("DEFAULT_CREDIT_DAYS", "30"))

    def __init__(self):
        # Ensure the backup directory exists
        self.RAW_BACKUP_DIR.mkdir(parents=True, exist_ok=True)


settings = Settings()
