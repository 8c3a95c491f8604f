# =============================================================================
# Database Models - SQLAlchemy ORM
# =============================================================================
#
# Only the columns the search core reads or writes are mapped. Profile CRUD
# lives in another service and owns the rest of the schema.
#
# SCHEMA OVERVIEW:
#
# ┌────────────────────────────┐      ┌──────────────────────────────┐
# │  builders                  │      │  skills                      │
# ├────────────────────────────┤      ├──────────────────────────────┤
# │ id (PK, text)              │─1:N─▶│ builder_id (FK)              │
# │ name, bio, role            │      │ name, category,              │
# │ experience_level           │      │ proficiency_level            │
# │ availability_status        │      └──────────────────────────────┘
# │ avatar_url, location       │      ┌──────────────────────────────┐
# │ github, updated_at         │      │  projects                    │
# │ profile_embedding (1536)   │─1:N─▶│ builder_id (FK)              │
# │ search_vector (tsvector)   │      │ title, description,          │
# └────────────────────────────┘      │ tech_stack (jsonb)           │
#                                     └──────────────────────────────┘
# ┌────────────────────────────┐
# │  agent_states              │  observability snapshots, one row per
# │ id = session_id (PK)       │  orchestration run, upserted per phase
# │ current_phase, state jsonb │
# └────────────────────────────┘
#
# search_vector is maintained by a database trigger on the profile service
# side; the core only queries it.
# =============================================================================

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, TSVECTOR
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from buildermatch.config import settings


class Base(DeclarativeBase):
    pass


class Builder(Base):
    """A builder profile: the entity the search ranks."""

    __tablename__ = "builders"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    bio: Mapped[str | None] = mapped_column(String(500), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Stored as PostgreSQL enums (Role, ExperienceLevel, AvailabilityStatus);
    # mapped as strings so comparisons go through ::text.
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="fullstack")
    experience_level: Mapped[str] = mapped_column(
        String(32), nullable=False, default="intermediate",
    )
    availability_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="available",
    )

    github: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )

    # Composite embedding of bio, skills, projects and preferences.
    profile_embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions), nullable=True,
    )
    search_vector: Mapped[str | None] = mapped_column(TSVECTOR, nullable=True)

    skills: Mapped[list["Skill"]] = relationship(
        "Skill", back_populates="builder", lazy="raise",
    )
    projects: Mapped[list["Project"]] = relationship(
        "Project", back_populates="builder", lazy="raise",
        order_by="Project.start_date.desc()",
    )

    __table_args__ = (
        Index(
            "builders_role_experience_level_availability_status_idx",
            "role", "experience_level", "availability_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Builder(id='{self.id}', name='{self.name}', role={self.role})>"


class Skill(Base):
    __tablename__ = "skills"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    builder_id: Mapped[str] = mapped_column(
        Text, ForeignKey("builders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="language")
    proficiency_level: Mapped[str] = mapped_column(
        String(32), nullable=False, default="intermediate",
    )

    builder: Mapped[Builder] = relationship("Builder", back_populates="skills")


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    builder_id: Mapped[str] = mapped_column(
        Text, ForeignKey("builders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    tech_stack: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    builder: Mapped[Builder] = relationship("Builder", back_populates="projects")


class AgentStateRecord(Base):
    """Latest snapshot of one orchestration run, for observability only."""

    __tablename__ = "agent_states"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    session_id: Mapped[str] = mapped_column(Text, nullable=False)
    current_phase: Mapped[str] = mapped_column(String(32), nullable=False, default="planning")
    state: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
        nullable=False,
    )
