"""Database models for the family tree domain."""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UnitType(str, enum.Enum):
    """Shape of a family unit, following the number of persons it holds."""

    single = "single"
    couple = "couple"
    polygamous = "polygamous"

    @classmethod
    def for_size(cls, size: int) -> "UnitType":
        if size >= 3:
            return cls.polygamous
        if size == 2:
            return cls.couple
        return cls.single


class Gender(str, enum.Enum):
    male = "male"
    female = "female"


class FamilyTree(Base):
    """A named tree anchored at a root unit."""

    __tablename__ = "family_trees"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    root_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    units: Mapped[list["FamilyUnit"]] = relationship(
        back_populates="tree", cascade="all, delete-orphan"
    )


class FamilyUnit(Base):
    """One person, a couple or a polygamous group sharing children."""

    __tablename__ = "family_units"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tree_id: Mapped[str] = mapped_column(
        ForeignKey("family_trees.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[UnitType] = mapped_column(Enum(UnitType), nullable=False)
    parent_id: Mapped[str | None] = mapped_column(String(36), index=True)
    primary_person_index: Mapped[int | None] = mapped_column(Integer)
    mother_index: Mapped[int | None] = mapped_column(Integer)

    tree: Mapped[FamilyTree] = relationship(back_populates="units")
    persons: Mapped[list["Person"]] = relationship(
        back_populates="unit",
        cascade="all, delete-orphan",
        order_by="Person.position",
    )


class Person(Base):
    """Member of a family unit; ``position`` keeps the order inside the unit."""

    __tablename__ = "persons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    unit_id: Mapped[str] = mapped_column(
        ForeignKey("family_units.id", ondelete="CASCADE"), nullable=False, index=True
    )
    first_name: Mapped[str] = mapped_column(String(64), nullable=False)
    last_name: Mapped[str] = mapped_column(String(64), nullable=False)
    gender: Mapped[Gender | None] = mapped_column(Enum(Gender))
    birth_date: Mapped[str | None] = mapped_column(String(32))
    death_date: Mapped[str | None] = mapped_column(String(32))
    photo_url: Mapped[str | None] = mapped_column(String(512))
    biography: Mapped[str | None] = mapped_column(Text())
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    unit: Mapped[FamilyUnit] = relationship(back_populates="persons")
