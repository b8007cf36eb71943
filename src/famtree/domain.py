"""In-memory family tree model and the rules for changing it.

Units store only their ``parent_id``; children are always derived from the
units that point at them. Mutation helpers never raise for a missing or
unsuitable reference. They return an :class:`Outcome` and leave the tree
untouched when they fail.
"""

from __future__ import annotations

import enum
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Mapping, Optional, Tuple, TypeVar

from .models import Gender, UnitType

T = TypeVar("T")

PERSON_FIELDS = (
    "first_name",
    "last_name",
    "gender",
    "birth_date",
    "death_date",
    "photo_url",
    "biography",
)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Person:
    id: str
    first_name: str
    last_name: str
    gender: Optional[Gender] = None
    birth_date: Optional[str] = None
    death_date: Optional[str] = None
    photo_url: Optional[str] = None
    biography: Optional[str] = None


@dataclass
class FamilyUnit:
    id: str
    type: UnitType
    persons: List[Person] = field(default_factory=list)
    parent_id: Optional[str] = None
    primary_person_index: Optional[int] = None
    mother_index: Optional[int] = None

    @property
    def primary_person(self) -> Optional[Person]:
        index = self.primary_person_index or 0
        if 0 <= index < len(self.persons):
            return self.persons[index]
        return None


@dataclass
class FamilyTree:
    id: str
    name: str
    root_id: str
    units: Dict[str, FamilyUnit] = field(default_factory=dict)

    @property
    def root(self) -> Optional[FamilyUnit]:
        return self.units.get(self.root_id)

    def children_index(self) -> Dict[str, List[str]]:
        """Map every unit id to the ids of the units whose parent it is."""

        index: Dict[str, List[str]] = {unit_id: [] for unit_id in self.units}
        for unit in self.units.values():
            if unit.parent_id is not None and unit.parent_id in index:
                index[unit.parent_id].append(unit.id)
        return index

    def children_ids(self, unit_id: str) -> List[str]:
        return [unit.id for unit in self.units.values() if unit.parent_id == unit_id]


class FailureReason(str, enum.Enum):
    not_found = "not_found"
    invalid_state = "invalid_state"
    forbidden = "forbidden"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a tree mutation: either a value or a failure reason."""

    value: Optional[T] = None
    reason: Optional[FailureReason] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, reason: FailureReason, message: str) -> "Outcome[T]":
        return cls(reason=reason, message=message)


# Construction ----------------------------------------------------------------


def create_person(first_name: str, last_name: str, **optional: Any) -> Person:
    """Build a person with a fresh identity.

    Only the optional attributes that are provided (and not ``None``) are
    copied; anything else stays absent.
    """

    unknown = set(optional) - set(PERSON_FIELDS)
    if unknown:
        raise TypeError(f"Unknown person fields: {', '.join(sorted(unknown))}")
    person = Person(id=new_id(), first_name=first_name, last_name=last_name)
    for key, value in optional.items():
        if value is not None:
            setattr(person, key, Gender(value) if key == "gender" else value)
    return person


def create_family_unit(
    persons: List[Person],
    parent_id: Optional[str] = None,
    mother_index: Optional[int] = None,
) -> FamilyUnit:
    return FamilyUnit(
        id=new_id(),
        type=UnitType.for_size(len(persons)),
        persons=list(persons),
        parent_id=parent_id,
        mother_index=mother_index,
    )


def create_family_tree(name: str, root_unit: FamilyUnit) -> FamilyTree:
    return FamilyTree(id=new_id(), name=name, root_id=root_unit.id, units={root_unit.id: root_unit})


# Mutations -------------------------------------------------------------------


def _missing_unit(unit_id: str) -> Outcome:
    return Outcome.failure(FailureReason.not_found, f"Unit {unit_id} not found")


def add_spouse(tree: FamilyTree, unit_id: str, person: Person) -> Outcome[Person]:
    """Turn a single unit into a couple; the existing person stays primary."""

    unit = tree.units.get(unit_id)
    if unit is None:
        return _missing_unit(unit_id)
    if unit.type != UnitType.single:
        return Outcome.failure(
            FailureReason.invalid_state, "A spouse can only be added to a single person"
        )

    unit.persons.append(person)
    unit.type = UnitType.couple
    unit.primary_person_index = 0
    return Outcome.success(person)


def add_mistress(tree: FamilyTree, unit_id: str, person: Person) -> Outcome[Person]:
    """Add another partner to a couple or polygamous unit."""

    unit = tree.units.get(unit_id)
    if unit is None:
        return _missing_unit(unit_id)
    if unit.type == UnitType.single:
        return Outcome.failure(
            FailureReason.invalid_state, "A mistress requires an existing spouse"
        )

    unit.persons.append(person)
    unit.type = UnitType.polygamous
    return Outcome.success(person)


def add_child(
    tree: FamilyTree,
    parent_id: str,
    person: Person,
    mother_index: Optional[int] = None,
) -> Outcome[FamilyUnit]:
    """Attach a new single-person unit below ``parent_id``.

    ``mother_index`` is kept only for children of a polygamous unit, where it
    must point at one of the partners (``1..len(persons) - 1``).
    """

    parent = tree.units.get(parent_id)
    if parent is None:
        return _missing_unit(parent_id)

    if parent.type != UnitType.polygamous:
        mother_index = None
    elif mother_index is not None and not 1 <= mother_index < len(parent.persons):
        return Outcome.failure(
            FailureReason.invalid_state,
            f"Mother index {mother_index} is out of range for unit {parent_id}",
        )

    child = create_family_unit([person], parent_id=parent_id, mother_index=mother_index)
    tree.units[child.id] = child
    return Outcome.success(child)


def collect_subtree(tree: FamilyTree, unit_id: str) -> List[str]:
    """Return ``unit_id`` followed by all of its transitive descendants."""

    children = tree.children_index()
    collected: List[str] = []
    pending = [unit_id]
    while pending:
        current = pending.pop()
        collected.append(current)
        pending.extend(children.get(current, []))
    return collected


def remove_unit(tree: FamilyTree, unit_id: str) -> Outcome[List[str]]:
    """Remove a unit, its descendants and their persons."""

    if unit_id == tree.root_id:
        return Outcome.failure(FailureReason.forbidden, "Cannot delete root unit")
    if unit_id not in tree.units:
        return _missing_unit(unit_id)

    removed = collect_subtree(tree, unit_id)
    for removed_id in removed:
        tree.units.pop(removed_id, None)
    return Outcome.success(removed)


def find_person(tree: FamilyTree, person_id: str) -> Optional[Tuple[FamilyUnit, Person]]:
    for unit in tree.units.values():
        for person in unit.persons:
            if person.id == person_id:
                return unit, person
    return None


def update_person(
    tree: FamilyTree, person_id: str, changes: Mapping[str, Any]
) -> Outcome[Person]:
    """Apply a partial update; ``None`` clears an optional attribute."""

    found = find_person(tree, person_id)
    if found is None:
        return Outcome.failure(FailureReason.not_found, f"Person {person_id} not found")

    unknown = set(changes) - set(PERSON_FIELDS)
    if unknown:
        return Outcome.failure(
            FailureReason.invalid_state, f"Unknown person fields: {', '.join(sorted(unknown))}"
        )
    for key in ("first_name", "last_name"):
        if key in changes and not (changes[key] or "").strip():
            return Outcome.failure(FailureReason.invalid_state, f"{key} cannot be empty")

    _, person = found
    for key, value in changes.items():
        if key == "gender" and value is not None:
            value = Gender(value)
        setattr(person, key, value)
    return Outcome.success(person)


# Consistency -----------------------------------------------------------------


def tree_problems(tree: FamilyTree) -> List[str]:
    """List every way ``tree`` breaks the single-rooted tree invariants."""

    problems: List[str] = []
    root = tree.root
    if root is None:
        return [f"Root unit {tree.root_id} is missing"]
    if root.parent_id is not None:
        problems.append("Root unit must not have a parent")

    for unit in tree.units.values():
        if unit.parent_id is not None and unit.parent_id not in tree.units:
            problems.append(f"Unit {unit.id} references missing parent {unit.parent_id}")
        if unit.id != tree.root_id and unit.parent_id is None:
            problems.append(f"Unit {unit.id} has no parent")

    children = tree.children_index()
    seen = {tree.root_id}
    queue = deque([tree.root_id])
    while queue:
        for child_id in children[queue.popleft()]:
            if child_id in seen:
                problems.append(f"Unit {child_id} is reachable more than once")
                continue
            seen.add(child_id)
            queue.append(child_id)

    unreachable = sorted(set(tree.units) - seen)
    if unreachable:
        problems.append(f"Units not reachable from root: {', '.join(unreachable)}")
    return problems
