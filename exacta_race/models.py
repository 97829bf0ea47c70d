"""
Database models for the exacta race engine
SQLAlchemy ORM (SQLite by default, any SQLAlchemy URL via DATABASE_URL)
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    BigInteger,
    String,
    DateTime,
    JSON,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime, timezone
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./exacta_race.db")


def make_engine(url: str):
    """Engine for ``url``; SQLite connections may be shared across API worker threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, pool_pre_ping=True, echo=False, connect_args=connect_args)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class Account(Base):
    """Ledger balance for one bettor identity"""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    account = Column(String, unique=True, nullable=False, index=True)
    balance = Column(BigInteger, nullable=False, default=0)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class RaceEventRecord(Base):
    """Persisted engine notification (race started, wager placed, payout...)"""

    __tablename__ = "race_events"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, default=_utcnow, index=True)
    event_type = Column(String(40), nullable=False, index=True)
    payload = Column(JSON, nullable=False)


class RaceResultRecord(Base):
    """Archive of finished races"""

    __tablename__ = "race_results"

    id = Column(Integer, primary_key=True, index=True)
    race_id = Column(Integer, nullable=False, index=True)
    first_place = Column(Integer, nullable=False)
    second_place = Column(Integer, nullable=False)
    third_place = Column(Integer)
    finished_at = Column(DateTime, default=_utcnow, index=True)


class RaceStateRecord(Base):
    """Lifecycle of the current race (single row, id=1)"""

    __tablename__ = "race_state"

    id = Column(Integer, primary_key=True)
    race_id = Column(Integer, nullable=False, default=0)
    state = Column(String(16), nullable=False)
    # Seeds are unsigned 64-bit, past the signed BigInteger range
    seed = Column(String(20))
    owner = Column(String, nullable=False)
    betting_opened_at = Column(DateTime, nullable=False)
    race_started_at = Column(DateTime)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class WagerRecord(Base):
    """Open wager of the current race; stake already debited from the bettor"""

    __tablename__ = "wagers"

    id = Column(Integer, primary_key=True, index=True)
    position = Column(Integer, nullable=False, index=True)
    bettor = Column(String, nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    first_pick = Column(Integer, nullable=False)
    second_pick = Column(Integer, nullable=False)
    placed_at = Column(DateTime, nullable=False)


class RaceOutcomeRecord(Base):
    """Full draw of a finished race, one row per race id"""

    __tablename__ = "race_outcomes"

    id = Column(Integer, primary_key=True, index=True)
    race_id = Column(Integer, nullable=False, unique=True, index=True)
    seed = Column(String(20), nullable=False)
    rankings = Column(JSON, nullable=False)
    finish_times = Column(JSON, nullable=False)
    first_place = Column(Integer, nullable=False)
    second_place = Column(Integer, nullable=False)
    total_pot = Column(BigInteger, nullable=False, default=0)
    recorded_at = Column(DateTime, default=_utcnow)


def init_db(bind=None):
    """Initialize database tables"""
    Base.metadata.create_all(bind=bind or engine)


if __name__ == "__main__":
    init_db()
    print("Database tables created")
