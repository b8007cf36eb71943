"""Persistence of family trees: row mapping, CRUD and cascade deletes."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any, List, Optional

from fastapi import HTTPException, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from . import domain, models

logger = logging.getLogger(__name__)


def _person_row(person: domain.Person, unit_id: str, position: int) -> models.Person:
    return models.Person(
        id=person.id,
        unit_id=unit_id,
        first_name=person.first_name,
        last_name=person.last_name,
        gender=person.gender,
        birth_date=person.birth_date,
        death_date=person.death_date,
        photo_url=person.photo_url,
        biography=person.biography,
        position=position,
    )


def _unit_row(unit: domain.FamilyUnit, tree_id: str) -> models.FamilyUnit:
    return models.FamilyUnit(
        id=unit.id,
        tree_id=tree_id,
        type=unit.type,
        parent_id=unit.parent_id,
        primary_person_index=unit.primary_person_index,
        mother_index=unit.mother_index,
        persons=[_person_row(person, unit.id, index) for index, person in enumerate(unit.persons)],
    )


def _touch(session: Session, tree_id: str) -> None:
    session.execute(
        update(models.FamilyTree)
        .where(models.FamilyTree.id == tree_id)
        .values(updated_at=datetime.now(timezone.utc))
    )


def list_trees(session: Session) -> List[models.FamilyTree]:
    query = select(models.FamilyTree).order_by(models.FamilyTree.updated_at.desc())
    return list(session.scalars(query))


def tree_exists(session: Session, tree_id: str) -> bool:
    return session.get(models.FamilyTree, tree_id) is not None


def get_tree(session: Session, tree_id: str) -> Optional[domain.FamilyTree]:
    """Load a full tree; children are derived later from ``parent_id``."""

    tree_row = session.get(models.FamilyTree, tree_id)
    if tree_row is None:
        return None

    units_query = (
        select(models.FamilyUnit)
        .options(selectinload(models.FamilyUnit.persons))
        .where(models.FamilyUnit.tree_id == tree_id)
    )
    units = {}
    for row in session.scalars(units_query):
        units[row.id] = domain.FamilyUnit(
            id=row.id,
            type=row.type,
            persons=[
                domain.Person(
                    id=person.id,
                    first_name=person.first_name,
                    last_name=person.last_name,
                    gender=person.gender,
                    birth_date=person.birth_date,
                    death_date=person.death_date,
                    photo_url=person.photo_url,
                    biography=person.biography,
                )
                for person in row.persons
            ],
            parent_id=row.parent_id,
            primary_person_index=row.primary_person_index,
            mother_index=row.mother_index,
        )

    return domain.FamilyTree(id=tree_row.id, name=tree_row.name, root_id=tree_row.root_id, units=units)


def require_tree(session: Session, tree_id: str) -> domain.FamilyTree:
    tree = get_tree(session, tree_id)
    if tree is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tree not found")
    return tree


def create_tree(session: Session, tree: domain.FamilyTree) -> models.FamilyTree:
    """Insert a tree together with every unit and person it holds."""

    if tree_exists(session, tree.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Tree {tree.id} already exists",
        )

    # unit and person ids are global, not scoped to a tree
    person_ids = [person.id for unit in tree.units.values() for person in unit.persons]
    for label, column, ids in (
        ("Unit", models.FamilyUnit.id, list(tree.units)),
        ("Person", models.Person.id, person_ids),
    ):
        taken = session.scalars(select(column).where(column.in_(ids))).first()
        if taken is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"{label} {taken} already exists",
            )

    tree_row = models.FamilyTree(id=tree.id, name=tree.name, root_id=tree.root_id)
    session.add(tree_row)
    for unit in tree.units.values():
        session.add(_unit_row(unit, tree.id))
    session.flush()
    logger.info("Created tree %s (%s) with %d units", tree.id, tree.name, len(tree.units))
    return tree_row


def delete_tree(session: Session, tree_id: str) -> None:
    unit_ids = list(
        session.scalars(select(models.FamilyUnit.id).where(models.FamilyUnit.tree_id == tree_id))
    )
    if unit_ids:
        session.execute(delete(models.Person).where(models.Person.unit_id.in_(unit_ids)))
    session.execute(delete(models.FamilyUnit).where(models.FamilyUnit.tree_id == tree_id))
    session.execute(delete(models.FamilyTree).where(models.FamilyTree.id == tree_id))
    logger.info("Deleted tree %s with %d units", tree_id, len(unit_ids))


def add_unit(session: Session, tree_id: str, unit: domain.FamilyUnit) -> None:
    session.add(_unit_row(unit, tree_id))
    _touch(session, tree_id)
    session.flush()


def add_person(session: Session, unit_id: str, person: domain.Person) -> models.Person:
    """Append ``person`` after the unit's current last position."""

    max_position = session.scalar(
        select(func.max(models.Person.position)).where(models.Person.unit_id == unit_id)
    )
    position = -1 if max_position is None else max_position
    row = _person_row(person, unit_id, position + 1)
    session.add(row)
    session.flush()
    return row


def update_unit(
    session: Session,
    unit_id: str,
    *,
    unit_type: Optional[models.UnitType] = None,
    primary_person_index: Optional[int] = None,
) -> None:
    values: dict[str, Any] = {}
    if unit_type is not None:
        values["type"] = unit_type
    if primary_person_index is not None:
        values["primary_person_index"] = primary_person_index
    if not values:
        return

    session.execute(update(models.FamilyUnit).where(models.FamilyUnit.id == unit_id).values(**values))
    tree_id = session.scalar(select(models.FamilyUnit.tree_id).where(models.FamilyUnit.id == unit_id))
    if tree_id is not None:
        _touch(session, tree_id)


def collect_descendants(session: Session, unit_id: str) -> List[str]:
    """Breadth-first scan of ``parent_id`` links below ``unit_id`` (included)."""

    to_delete = [unit_id]
    index = 0
    while index < len(to_delete):
        children = session.scalars(
            select(models.FamilyUnit.id).where(models.FamilyUnit.parent_id == to_delete[index])
        )
        to_delete.extend(children)
        index += 1
    return to_delete


def delete_units(session: Session, unit_ids: Iterable[str]) -> List[str]:
    ids = list(unit_ids)
    if not ids:
        return ids
    session.execute(delete(models.Person).where(models.Person.unit_id.in_(ids)))
    session.execute(delete(models.FamilyUnit).where(models.FamilyUnit.id.in_(ids)))
    return ids


def delete_unit(session: Session, tree_id: str, unit_id: str) -> List[str]:
    """Delete a unit and its descendants. Returns every deleted unit id."""

    deleted = delete_units(session, collect_descendants(session, unit_id))
    _touch(session, tree_id)
    logger.info("Deleted %d units below %s in tree %s", len(deleted), unit_id, tree_id)
    return deleted


def update_person(session: Session, person_id: str, changes: Mapping[str, Any]) -> None:
    if not changes:
        return
    session.execute(update(models.Person).where(models.Person.id == person_id).values(**changes))
    tree_id = session.scalar(
        select(models.FamilyUnit.tree_id)
        .join(models.Person, models.Person.unit_id == models.FamilyUnit.id)
        .where(models.Person.id == person_id)
    )
    if tree_id is not None:
        _touch(session, tree_id)
