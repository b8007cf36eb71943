"""Conversion between in-memory trees and their JSON snapshot form."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any, Dict, Mapping, Union

from pydantic import ValidationError

from . import domain, schemas


class SnapshotError(ValueError):
    """Raised when a snapshot cannot be turned back into a consistent tree."""


def person_to_schema(person: domain.Person) -> schemas.PersonRead:
    return schemas.PersonRead(**asdict(person))


def unit_to_schema(unit: domain.FamilyUnit, children_ids: list[str]) -> schemas.FamilyUnitRead:
    return schemas.FamilyUnitRead(
        id=unit.id,
        type=unit.type,
        persons=[person_to_schema(person) for person in unit.persons],
        children_ids=children_ids,
        parent_id=unit.parent_id,
        primary_person_index=unit.primary_person_index,
        mother_index=unit.mother_index,
    )


def tree_to_schema(tree: domain.FamilyTree) -> schemas.FamilyTreeRead:
    children = tree.children_index()
    return schemas.FamilyTreeRead(
        id=tree.id,
        name=tree.name,
        root_id=tree.root_id,
        units={
            unit_id: unit_to_schema(unit, children[unit_id])
            for unit_id, unit in tree.units.items()
        },
    )


def export_tree(tree: domain.FamilyTree) -> Dict[str, Any]:
    """Serialize ``tree`` to a JSON-compatible dict using camelCase keys."""

    return tree_to_schema(tree).model_dump(mode="json", by_alias=True, exclude_none=True)


def dumps(tree: domain.FamilyTree) -> str:
    return json.dumps(export_tree(tree), indent=2)


def tree_from_schema(snapshot: schemas.FamilyTreeRead) -> domain.FamilyTree:
    """Rebuild a tree and check that it is a single-rooted, consistent tree.

    ``childrenIds`` in the snapshot must agree with the units' ``parentId``
    values, since only the latter is kept.
    """

    units: Dict[str, domain.FamilyUnit] = {}
    for key, unit in snapshot.units.items():
        if key != unit.id:
            raise SnapshotError(f"Unit key {key} does not match unit id {unit.id}")
        units[unit.id] = domain.FamilyUnit(
            id=unit.id,
            type=unit.type,
            persons=[domain.Person(**person.model_dump()) for person in unit.persons],
            parent_id=unit.parent_id,
            primary_person_index=unit.primary_person_index,
            mother_index=unit.mother_index,
        )

    tree = domain.FamilyTree(
        id=snapshot.id, name=snapshot.name, root_id=snapshot.root_id, units=units
    )

    problems = domain.tree_problems(tree)
    derived = tree.children_index()
    for unit in snapshot.units.values():
        if sorted(unit.children_ids) != sorted(derived[unit.id]):
            problems.append(f"childrenIds of unit {unit.id} disagree with parent references")
    person_ids = [person.id for unit in tree.units.values() for person in unit.persons]
    if len(person_ids) != len(set(person_ids)):
        problems.append("Person ids must be unique")
    if problems:
        raise SnapshotError("; ".join(problems))
    return tree


def import_tree(data: Union[str, bytes, Mapping[str, Any]]) -> domain.FamilyTree:
    """Parse a snapshot produced by :func:`export_tree` or :func:`dumps`."""

    try:
        if isinstance(data, (str, bytes)):
            snapshot = schemas.FamilyTreeRead.model_validate_json(data)
        else:
            snapshot = schemas.FamilyTreeRead.model_validate(data)
    except ValidationError as exc:
        raise SnapshotError(str(exc)) from exc
    return tree_from_schema(snapshot)
