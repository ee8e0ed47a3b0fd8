"""
SQLAlchemy table definitions for OKR storage.

Four tables: objectives, key_results, big_rocks and check_ins. Identifiers
are string UUIDs. Timestamps are naive UTC. Objectives carry a ``version``
column used for optimistic concurrency on progress writes.

Schema creation goes through ``init_schema()``; there is no migration
tooling.
"""

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime, Text,
    ForeignKey, Index, CheckConstraint, JSON
)
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator


# Cross-database compatible JSON type
# Uses JSONB on PostgreSQL, JSON on SQLite/others
class JSONB(TypeDecorator):
    """A portable JSONB type that works with both PostgreSQL and SQLite."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_JSONB())
        return dialect.type_descriptor(JSON())


Base = declarative_base()


class ObjectiveRecord(Base):
    """Objective row."""
    __tablename__ = "objectives"

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), nullable=False, default="default", index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    parent_id = Column(String(36), ForeignKey("objectives.id"), nullable=True, index=True)

    progress_mode = Column(String(16), nullable=False, default="rollup")
    progress = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False, default="not_started")
    status_override = Column(Boolean, nullable=False, default=False)

    quarter = Column(Integer, nullable=True, comment="1-4, 0 or NULL for annual")
    year = Column(Integer, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    last_check_in_at = Column(DateTime, nullable=True)
    last_check_in_note = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1, comment="Optimistic locking version")
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint('progress >= 0 AND progress <= 100', name='ck_objective_progress'),
        CheckConstraint("progress_mode IN ('rollup', 'manual')", name='ck_objective_progress_mode'),
        Index('ix_objective_period', 'tenant_id', 'year', 'quarter'),
    )

    def __repr__(self):
        return f"<ObjectiveRecord(id={self.id}, progress={self.progress}, version={self.version})>"


class KeyResultRecord(Base):
    """Key Result row. A NULL weight means unset."""
    __tablename__ = "key_results"

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), nullable=False, default="default")
    objective_id = Column(String(36), ForeignKey("objectives.id"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)

    metric_type = Column(String(16), nullable=False, default="increase")
    initial_value = Column(Float, nullable=False, default=0.0)
    current_value = Column(Float, nullable=False, default=0.0)
    target_value = Column(Float, nullable=False, default=100.0)
    unit = Column(String(32), nullable=True)

    progress = Column(Integer, nullable=False, default=0)
    weight = Column(Float, nullable=True)
    is_weight_locked = Column(Boolean, nullable=False, default=False)

    status = Column(String(32), nullable=False, default="not_started")
    is_promoted_to_kpi = Column(Boolean, nullable=False, default=False)

    last_check_in_at = Column(DateTime, nullable=True)
    last_check_in_note = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint('progress >= 0 AND progress <= 100', name='ck_key_result_progress'),
    )


class BigRockRecord(Base):
    """Big Rock row."""
    __tablename__ = "big_rocks"

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), nullable=False, default="default")
    title = Column(String(500), nullable=False)
    objective_id = Column(String(36), ForeignKey("objectives.id"), nullable=True, index=True)
    key_result_id = Column(String(36), ForeignKey("key_results.id"), nullable=True)

    completion_percentage = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False, default="not_started")

    quarter = Column(Integer, nullable=True)
    year = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    __table_args__ = (
        CheckConstraint(
            'completion_percentage >= 0 AND completion_percentage <= 100',
            name='ck_big_rock_completion'
        ),
    )


class CheckInRecord(Base):
    """Check-in row. Rows are inserted once and only rewritten by corrections."""
    __tablename__ = "check_ins"

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), nullable=False, default="default")
    entity_type = Column(String(16), nullable=False)
    entity_id = Column(String(36), nullable=False)

    previous_progress = Column(Integer, nullable=True)
    new_progress = Column(Integer, nullable=False)
    previous_value = Column(Float, nullable=True)
    new_value = Column(Float, nullable=True)
    previous_status = Column(String(32), nullable=True)
    new_status = Column(String(32), nullable=True)

    note = Column(Text, nullable=True)
    achievements = Column(JSONB, nullable=False, default=list)
    challenges = Column(JSONB, nullable=False, default=list)
    next_steps = Column(JSONB, nullable=False, default=list)

    source = Column(String(32), nullable=False, default="manual")
    user_id = Column(String(64), nullable=True)
    user_email = Column(String(255), nullable=True)

    as_of_date = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint('new_progress >= 0 AND new_progress <= 100', name='ck_check_in_progress'),
        CheckConstraint(
            "entity_type IN ('objective', 'key_result', 'big_rock')",
            name='ck_check_in_entity_type'
        ),
        Index('ix_check_in_trajectory', 'entity_type', 'entity_id', 'as_of_date', 'created_at'),
    )
