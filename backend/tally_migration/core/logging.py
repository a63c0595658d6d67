"""Centralized logging setup using loguru."""
import sys
from loguru import logger
from tally_migration.core.config import settings


def _has_batch(record) -> bool:
    return "batch" in record["extra"]


def setup_logging() -> None:
    """
    Configure loguru sinks: colourised stderr, the rotating service log, and
    a per-batch audit log fed by ``logger.contextualize(batch=...)`` blocks
    in the orchestrator.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.LOG_LEVEL,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        colorize=True,
    )
    logger.add(
        settings.LOG_FILE,
        level=settings.LOG_LEVEL,
        rotation="10 MB",
        retention="30 days",
        compression="zip",
    )
    logger.add(
        settings.AUDIT_LOG_FILE,
        level="INFO",
        filter=_has_batch,
        format="{time:YYYY-MM-DD HH:mm:ss} | {extra[batch]} | {level: <8} | {message}",
        rotation="10 MB",
        retention="90 days",
        compression="zip",
    )
