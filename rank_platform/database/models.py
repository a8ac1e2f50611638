"""
Database models for the Geo-Grid Rank Tracking Platform.
Uses SQLAlchemy ORM with support for SQLite (dev) and PostgreSQL (production).
"""

from sqlalchemy import (
    create_engine, Column, Integer, String, Float, Boolean, Text,
    DateTime, JSON, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.sql import func

from rank_platform.config.settings import DATABASE_URL

engine = create_engine(DATABASE_URL, echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ============================================================
# Campaigns & tracked keywords
# ============================================================

class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(500), nullable=False)
    business_name = Column(String(500), nullable=False)  # identity matched in search results
    center_lat = Column(Float, nullable=False)
    center_lng = Column(Float, nullable=False)
    grid_size = Column(Integer, default=5)
    radius_miles = Column(Float, default=1.0)
    grid_shape = Column(String(50), default="square")  # square, circular
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    keywords = relationship("CampaignKeyword", back_populates="campaign", cascade="all, delete-orphan")
    runs = relationship("GridRunRecord", back_populates="campaign", cascade="all, delete-orphan")


class CampaignKeyword(Base):
    __tablename__ = "campaign_keywords"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False)
    keyword = Column(String(500), nullable=False)
    tags = Column(JSON, default=list)  # e.g., ["apostille", "near me"]
    is_primary = Column(Boolean, default=False)
    volume = Column(Integer, default=0)
    difficulty = Column(Integer, default=0)
    created_at = Column(DateTime, default=func.now())

    campaign = relationship("Campaign", back_populates="keywords")

    __table_args__ = (
        UniqueConstraint("campaign_id", "keyword", name="uq_campaign_keyword"),
        Index("idx_campaign_keyword_campaign", "campaign_id"),
    )


# ============================================================
# Grid runs & per-cell observations
# ============================================================

class GridRunRecord(Base):
    __tablename__ = "grid_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False)
    center_lat = Column(Float, nullable=False)
    center_lng = Column(Float, nullable=False)
    grid_size = Column(Integer, nullable=False)
    radius_miles = Column(Float, nullable=False)
    grid_shape = Column(String(50), default="square")
    run_timestamp = Column(DateTime(timezone=True), nullable=False)
    cell_count = Column(Integer, default=0)
    keyword_count = Column(Integer, default=0)
    failed_lookups = Column(Integer, default=0)
    created_at = Column(DateTime, default=func.now())

    campaign = relationship("Campaign", back_populates="runs")
    cells = relationship("GridCellRank", back_populates="run", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("campaign_id", "run_timestamp", name="uq_grid_run_timestamp"),
        Index("idx_grid_run_campaign_ts", "campaign_id", "run_timestamp"),
    )


class GridCellRank(Base):
    __tablename__ = "grid_cell_ranks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Integer, ForeignKey("grid_runs.id"), nullable=False)
    keyword = Column(String(500), nullable=False)
    cell_id = Column(Integer, nullable=False)  # row-major position, from 1
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    rank = Column(Integer, nullable=False)  # 101 = not in the top 100
    search_volume = Column(Integer, default=0)
    rank_change = Column(Integer, default=0)
    competitors = Column(JSON)  # business names ranking at this cell
    error = Column(Text)  # provider failure, if the rank was degraded
    latency_seconds = Column(Float)
    date_checked = Column(DateTime(timezone=True))

    run = relationship("GridRunRecord", back_populates="cells")

    __table_args__ = (
        Index("idx_cell_rank_run_keyword", "run_id", "keyword"),
    )


class KeywordRankHistory(Base):
    __tablename__ = "keyword_rank_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False)
    keyword = Column(String(500), nullable=False)
    run_timestamp = Column(DateTime(timezone=True), nullable=False)
    rank = Column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("campaign_id", "keyword", "run_timestamp", name="uq_history_point"),
        Index("idx_history_campaign_keyword", "campaign_id", "keyword"),
    )


# ============================================================
# Alerts
# ============================================================

class Alert(Base):
    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"))
    alert_type = Column(String(100), nullable=False)  # ranking_drop, task_failure
    severity = Column(String(50), default="info")  # info, warning, critical
    title = Column(String(500), nullable=False)
    message = Column(Text)
    data = Column(JSON)
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        Index("idx_alert_type", "alert_type"),
    )


def init_db(bind=None):
    """Initialize the database, creating all tables."""
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    return bind


if __name__ == "__main__":
    print("Initializing database...")
    init_db()
    print("Database initialized successfully.")
