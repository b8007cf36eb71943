from __future__ import annotations

import json

import pytest

from famtree import domain, snapshot
from famtree.models import Gender, UnitType


def _person(first_name: str, **optional) -> domain.Person:
    return domain.create_person(first_name, "Tester", **optional)


def _tree() -> domain.FamilyTree:
    return domain.create_family_tree("Test", domain.create_family_unit([_person("Root")]))


class TestConstruction:
    def test_create_person_copies_only_given_fields(self) -> None:
        person = domain.create_person("Ann", "Lee", gender="female", birth_date="1901-01-01")

        assert person.id
        assert person.gender is Gender.female
        assert person.birth_date == "1901-01-01"
        assert person.death_date is None
        assert person.photo_url is None

    def test_create_person_rejects_unknown_fields(self) -> None:
        with pytest.raises(TypeError):
            domain.create_person("Ann", "Lee", nickname="A")

    @pytest.mark.parametrize(
        ("size", "expected"),
        [(1, UnitType.single), (2, UnitType.couple), (3, UnitType.polygamous), (5, UnitType.polygamous)],
    )
    def test_unit_type_follows_person_count(self, size: int, expected: UnitType) -> None:
        unit = domain.create_family_unit([_person(str(i)) for i in range(size)])
        assert unit.type is expected

    def test_tree_is_seeded_with_root(self) -> None:
        root = domain.create_family_unit([_person("Root")])
        tree = domain.create_family_tree("Seed", root)

        assert tree.root_id == root.id
        assert list(tree.units) == [root.id]
        assert tree.children_ids(root.id) == []


class TestMutations:
    def test_add_spouse_to_single(self) -> None:
        tree = _tree()
        root = tree.root
        original = root.persons[0]
        spouse = _person("Spouse")

        outcome = domain.add_spouse(tree, tree.root_id, spouse)

        assert outcome.ok
        assert outcome.value is spouse
        assert root.type is UnitType.couple
        assert root.persons == [original, spouse]
        assert root.primary_person_index == 0

    def test_add_spouse_to_couple_fails_without_change(self) -> None:
        tree = _tree()
        domain.add_spouse(tree, tree.root_id, _person("First"))

        outcome = domain.add_spouse(tree, tree.root_id, _person("Second"))

        assert not outcome.ok
        assert outcome.reason is domain.FailureReason.invalid_state
        assert len(tree.root.persons) == 2

    def test_add_mistress_to_couple(self) -> None:
        tree = _tree()
        p1 = tree.root.persons[0]
        p2 = _person("Wife")
        domain.add_spouse(tree, tree.root_id, p2)
        mistress = _person("Mistress")

        outcome = domain.add_mistress(tree, tree.root_id, mistress)

        assert outcome.ok
        assert tree.root.type is UnitType.polygamous
        assert tree.root.persons == [p1, p2, mistress]

    def test_add_mistress_to_single_is_refused(self) -> None:
        tree = _tree()

        outcome = domain.add_mistress(tree, tree.root_id, _person("Mistress"))

        assert outcome.reason is domain.FailureReason.invalid_state
        assert tree.root.type is UnitType.single
        assert len(tree.root.persons) == 1

    def test_missing_unit_reports_not_found(self) -> None:
        tree = _tree()

        for outcome in (
            domain.add_spouse(tree, "nope", _person("X")),
            domain.add_mistress(tree, "nope", _person("X")),
            domain.add_child(tree, "nope", _person("X")),
            domain.remove_unit(tree, "nope"),
            domain.update_person(tree, "nope", {"first_name": "X"}),
        ):
            assert not outcome.ok
            assert outcome.reason is domain.FailureReason.not_found
        assert len(tree.units) == 1

    def test_add_child_registers_under_parent(self) -> None:
        tree = _tree()

        outcome = domain.add_child(tree, tree.root_id, _person("Child"), mother_index=1)

        child = outcome.value
        assert child.parent_id == tree.root_id
        assert child.type is UnitType.single
        assert child.mother_index is None
        assert tree.children_ids(tree.root_id) == [child.id]

    def test_add_child_to_polygamous_keeps_mother_index(self) -> None:
        tree = _tree()
        domain.add_spouse(tree, tree.root_id, _person("Wife"))
        domain.add_mistress(tree, tree.root_id, _person("Mistress"))

        child = domain.add_child(tree, tree.root_id, _person("Child"), mother_index=2).value
        out_of_range = domain.add_child(tree, tree.root_id, _person("Bad"), mother_index=3)

        assert child.mother_index == 2
        assert out_of_range.reason is domain.FailureReason.invalid_state
        assert len(tree.units) == 2

    def test_remove_unit_cascades(self) -> None:
        tree = _tree()
        a = domain.add_child(tree, tree.root_id, _person("A")).value
        b = domain.add_child(tree, a.id, _person("B")).value
        c = domain.add_child(tree, b.id, _person("C")).value
        sibling = domain.add_child(tree, tree.root_id, _person("Sibling")).value

        outcome = domain.remove_unit(tree, a.id)

        assert outcome.ok
        assert set(outcome.value) == {a.id, b.id, c.id}
        assert set(tree.units) == {tree.root_id, sibling.id}
        assert tree.children_ids(tree.root_id) == [sibling.id]

    def test_remove_root_is_forbidden(self) -> None:
        tree = _tree()

        outcome = domain.remove_unit(tree, tree.root_id)

        assert outcome.reason is domain.FailureReason.forbidden
        assert tree.root is not None

    def test_update_person(self) -> None:
        tree = _tree()
        person = tree.root.persons[0]

        outcome = domain.update_person(tree, person.id, {"last_name": "Changed", "gender": "male"})

        assert outcome.ok
        assert person.last_name == "Changed"
        assert person.gender is Gender.male
        assert domain.update_person(tree, person.id, {"first_name": ""}).reason is (
            domain.FailureReason.invalid_state
        )
        assert domain.update_person(tree, person.id, {"first_name": "   "}).reason is (
            domain.FailureReason.invalid_state
        )
        assert person.first_name.strip()
        assert domain.update_person(tree, person.id, {"shoe_size": 9}).reason is (
            domain.FailureReason.invalid_state
        )


class TestInvariants:
    def test_every_unit_reachable_once(self) -> None:
        tree = _tree()
        a = domain.add_child(tree, tree.root_id, _person("A")).value
        domain.add_child(tree, a.id, _person("B"))
        domain.add_child(tree, tree.root_id, _person("C"))

        assert domain.tree_problems(tree) == []
        children = tree.children_index()
        seen = []
        pending = [tree.root_id]
        while pending:
            current = pending.pop()
            seen.append(current)
            pending.extend(children[current])
        assert sorted(seen) == sorted(tree.units)

    def test_problems_reported(self) -> None:
        tree = _tree()
        a = domain.add_child(tree, tree.root_id, _person("A")).value
        b = domain.add_child(tree, a.id, _person("B")).value
        a.parent_id = b.id

        problems = domain.tree_problems(tree)

        assert any("not reachable" in problem for problem in problems)

        tree.units[b.id].parent_id = "ghost"
        assert any("missing parent ghost" in problem for problem in domain.tree_problems(tree))


class TestSnapshot:
    def _populated(self) -> domain.FamilyTree:
        tree = domain.create_family_tree(
            "Snap",
            domain.create_family_unit([_person("Root", gender="male", biography="First")]),
        )
        domain.add_spouse(tree, tree.root_id, _person("Wife", gender="female"))
        domain.add_mistress(tree, tree.root_id, _person("Other", death_date="1990"))
        domain.add_child(tree, tree.root_id, _person("Kid", photo_url="k/1.png"), mother_index=2)
        return tree

    def test_round_trip(self) -> None:
        tree = self._populated()

        restored = snapshot.import_tree(snapshot.dumps(tree))

        assert restored == tree

    def test_export_uses_camel_case_and_children(self) -> None:
        tree = self._populated()

        exported = snapshot.export_tree(tree)
        root = exported["units"][tree.root_id]

        assert exported["rootId"] == tree.root_id
        assert root["primaryPersonIndex"] == 0
        assert len(root["childrenIds"]) == 1
        assert "parentId" not in root
        json.dumps(exported)

    def test_inconsistent_children_rejected(self) -> None:
        exported = snapshot.export_tree(self._populated())
        exported["units"][exported["rootId"]]["childrenIds"] = []

        with pytest.raises(snapshot.SnapshotError, match="childrenIds"):
            snapshot.import_tree(exported)

    def test_malformed_snapshot_rejected(self) -> None:
        with pytest.raises(snapshot.SnapshotError):
            snapshot.import_tree({"id": "t", "name": "n"})
