"""Pydantic schemas for API serialization and validation."""

from __future__ import annotations

import enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import Gender, UnitType


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class PersonDraft(CamelModel):
    first_name: str = Field(..., min_length=1, max_length=64)
    last_name: str = Field(..., min_length=1, max_length=64)
    gender: Optional[Gender] = None
    birth_date: Optional[str] = Field(default=None, max_length=32)
    death_date: Optional[str] = Field(default=None, max_length=32)
    photo_url: Optional[str] = Field(default=None, max_length=512)
    biography: Optional[str] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip_names(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class PersonRead(PersonDraft):
    id: str


class PersonUpdate(CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=64)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=64)
    gender: Optional[Gender] = None
    birth_date: Optional[str] = Field(default=None, max_length=32)
    death_date: Optional[str] = Field(default=None, max_length=32)
    photo_url: Optional[str] = Field(default=None, max_length=512)
    biography: Optional[str] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip_names(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class FamilyUnitRead(CamelModel):
    id: str
    type: UnitType
    persons: List[PersonRead] = Field(default_factory=list)
    children_ids: List[str] = Field(default_factory=list)
    parent_id: Optional[str] = None
    primary_person_index: Optional[int] = Field(default=None, ge=0)
    mother_index: Optional[int] = Field(default=None, ge=1)


class FamilyTreeRead(CamelModel):
    id: str
    name: str
    root_id: str
    units: Dict[str, FamilyUnitRead] = Field(default_factory=dict)


class TreeSummary(CamelModel):
    id: str
    name: str


class TreeCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=128)
    root_person: PersonDraft


class TreeCreated(CamelModel):
    id: str
    name: str
    root_id: str


class UnitAction(str, enum.Enum):
    add_child = "addChild"
    add_spouse = "addSpouse"
    add_mistress = "addMistress"


class UnitActionRequest(CamelModel):
    action: UnitAction
    unit_id: str = Field(..., min_length=1)
    person: PersonDraft
    mother_index: Optional[int] = Field(default=None, ge=1)


class UnitActionResult(CamelModel):
    person: PersonRead
    unit: Optional[FamilyUnitRead] = None
    unit_type: Optional[UnitType] = None


class UnitDeleted(CamelModel):
    deleted_ids: List[str]


class SuccessResult(CamelModel):
    success: bool = True


class ImageUploaded(CamelModel):
    key: str


class ImageInfo(CamelModel):
    key: str
    size: int
    content_type: Optional[str] = None


class Position(CamelModel):
    x: float
    y: float


class DiagramNodeData(CamelModel):
    unit: FamilyUnitRead


class DiagramNode(CamelModel):
    id: str
    type: str = "family"
    position: Position
    width: float
    height: float
    level: int
    data: DiagramNodeData


class DiagramEdgeData(CamelModel):
    color: str


class DiagramEdge(CamelModel):
    id: str
    source: str
    target: str
    type: str = "family"
    source_handle: Optional[str] = None
    data: DiagramEdgeData


class DiagramRead(CamelModel):
    engine: str
    nodes: List[DiagramNode]
    edges: List[DiagramEdge]
