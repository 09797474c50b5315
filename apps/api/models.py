from sqlalchemy import Column, Integer, Boolean, Float, Date, DateTime, Text, String, Index, UniqueConstraint, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import uuid

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# EXTERNALLY OWNED INPUTS (read-only for this service)
# =============================================================================

class ActivityDetail(Base):
    """
    Raw per-sample payload for one activity as delivered by a provider.

    `payload` is whatever shape the ingestion side stored: a list of sample
    rows, an object of parallel arrays, or a nested activity-details object.
    """
    __tablename__ = "activity_detail"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    activity_id = Column(String(128), nullable=False)
    provider = Column(String(32), nullable=False)  # garmin | polar | strava | strava_gpx | zepp_gpx
    payload = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "activity_id", "provider", name="uq_activity_detail_key"),
        Index("ix_activity_detail_user_provider", "user_id", "provider"),
    )


class ProviderActivity(Base):
    """
    Per-activity summary row (provider column spellings kept in `summary`).

    Used for strain scoring; `activity_date` is the local calendar date.
    """
    __tablename__ = "provider_activity"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    activity_id = Column(String(128), nullable=False)
    provider = Column(String(32), nullable=False)
    activity_date = Column(Date, nullable=False)
    summary = Column(JSONType, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "activity_id", "provider", name="uq_provider_activity_key"),
        Index("ix_provider_activity_user_date", "user_id", "activity_date"),
    )


class AthleteProfile(Base):
    __tablename__ = "athlete_profile"

    user_id = Column(String(64), primary_key=True)
    birth_date = Column(Date, nullable=True)
    max_heart_rate = Column(Integer, nullable=True)  # explicit, user-supplied


class Subscriber(Base):
    """Entitlement flag maintained by billing."""
    __tablename__ = "subscriber"

    user_id = Column(String(64), primary_key=True)
    subscribed = Column(Boolean, nullable=False, default=False)
    subscription_tier = Column(Text, nullable=True)


# =============================================================================
# DERIVED TABLES (owned here, upserted by natural key, fully recomputable)
# =============================================================================

class ActivityChartCache(Base):
    """
    Resampled chart series, zone distribution and headline stats.

    build_status moves pending -> ready | error. Bumping `version` lets a
    new chart layout coexist with rows built by the previous one.
    """
    __tablename__ = "activity_chart_cache"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    activity_source = Column(String(32), nullable=False)
    activity_id = Column(String(128), nullable=False)
    version = Column(Integer, nullable=False, default=1)

    series = Column(JSONType, nullable=True)
    zones = Column(JSONType, nullable=True)
    segments = Column(JSONType, nullable=True)  # 1 km chart segments
    stats = Column(JSONType, nullable=True)

    build_status = Column(String(16), nullable=False, default="pending")
    error_message = Column(Text, nullable=True)
    built_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "activity_source", "activity_id", "version", name="uq_activity_chart_cache_key"),
    )


class ActivityCoordinates(Base):
    __tablename__ = "activity_coordinates"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    activity_source = Column(String(32), nullable=False)
    activity_id = Column(String(128), nullable=False)

    coordinates = Column(JSONType, nullable=False)  # [[lat, lon], ...]
    total_points = Column(Integer, nullable=False)
    sampled_points = Column(Integer, nullable=False)
    starting_latitude = Column(Float, nullable=True)
    starting_longitude = Column(Float, nullable=True)
    bounding_box = Column(JSONType, nullable=True)  # [[min_lat, min_lon], [max_lat, max_lon]]
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "activity_source", "activity_id", name="uq_activity_coordinates_key"),
    )


class EfficiencyFingerprint(Base):
    """
    Cached efficiency fingerprint (segments, alerts, recommendations).

    Invalidated by bumping CURRENT_FINGERPRINT_VERSION in
    services.efficiency_fingerprint.
    """
    __tablename__ = "efficiency_fingerprint"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    activity_id = Column(String(128), nullable=False)
    activity_source = Column(String(32), nullable=False)

    segments = Column(JSONType, nullable=False)
    alerts = Column(JSONType, nullable=False)
    recommendations = Column(JSONType, nullable=False)
    overall_score = Column(Integer, nullable=False, default=0)

    analysis_version = Column(Integer, nullable=False, default=1)
    computed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "activity_id", "activity_source", name="uq_efficiency_fingerprint_key"),
    )


class FitnessScoreDaily(Base):
    """
    One composite fitness score per athlete per calendar date.

    fitness_score == capacity_score + consistency_score + recovery_balance_score.
    """
    __tablename__ = "fitness_score_daily"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    calendar_date = Column(Date, nullable=False)

    fitness_score = Column(Float, nullable=False)
    capacity_score = Column(Float, nullable=False)
    consistency_score = Column(Float, nullable=False)
    recovery_balance_score = Column(Float, nullable=False)
    daily_strain = Column(Float, nullable=False, default=0.0)
    atl_7day = Column(Float, nullable=False, default=0.0)
    ctl_42day = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "calendar_date", name="uq_fitness_score_daily_key"),
        Index("ix_fitness_score_daily_user_date", "user_id", "calendar_date"),
    )
