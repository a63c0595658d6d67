"""SQLModel database engine and session management."""
from sqlmodel import SQLModel, create_engine, Session
from tally_migration.core.config import settings

# Import models so SQLModel.metadata knows about all tables
import tally_migration.models  # noqa: F401

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False},
    echo=False,
)


def create_db_and_tables() -> None:
    """Create all tables defined in SQLModel models."""
    SQLModel.metadata.create_all(engine)


def new_session() -> Session:
    """Session for work that outlives a request (background imports)."""
    return Session(engine)


def get_session():
    """FastAPI dependency: yields a SQLModel session."""
    with Session(engine) as session:
        yield session
