"""
Change Store Tests:
  - Empty project reads as version 0
  - Save / load keeps every field of every change
  - Stale writes raise ConflictError and save nothing
  - atomic() commits on success, rolls back on error
  - ChangeSet helpers (find, with_change, next_sequence)
"""

from dataclasses import replace

import pytest

from change_governance.core.exceptions import ConflictError, NotFoundError
from change_governance.models import db
from change_governance.models.change_request import Alternative, ChangeStatus
from change_governance.services.change_store import ChangeSet, SqlChangeStore


@pytest.fixture()
def store():
    return SqlChangeStore()


class TestLoadSave:

    def test_empty_project(self, store):
        current = store.load_changes(42)
        assert current.version == 0
        assert current.changes == ()
        assert current.next_sequence == 1

    def test_first_save_creates_version_one(self, store, make_change):
        change = make_change(cost=30_000, justification="Regulatory deadline")
        with store.atomic():
            version = store.save_changes(1, [change], 0)
        assert version == 1

        db.session.expire_all()
        loaded = store.load_changes(1)
        assert loaded.version == 1
        assert loaded.changes[0].to_dict() == change.to_dict()

    def test_round_trip_keeps_alternatives_and_history(self, store, make_change):
        change = make_change(cost=30_000)
        change = replace(change, alternatives=(Alternative(id="a1", name="Phase it", pros=("cheaper",)),))
        with store.atomic():
            store.save_changes(1, [change], 0)
        loaded = store.load_changes(1).find(change.id)
        assert loaded.alternatives[0].pros == ("cheaper",)
        assert loaded.status_history[0].status == ChangeStatus.IMPACT_ANALYSIS

    def test_sequential_saves_increment_version(self, store, make_change):
        first, second = make_change(), make_change()
        with store.atomic():
            store.save_changes(1, [first], 0)
        with store.atomic():
            version = store.save_changes(1, [first, second], 1)
        assert version == 2
        assert len(store.load_changes(1).changes) == 2

    def test_projects_are_independent(self, store, make_change):
        with store.atomic():
            store.save_changes(1, [make_change()], 0)
            store.save_changes(2, [], 0)
        assert store.load_changes(2).version == 1
        assert store.load_changes(2).changes == ()


class TestConflicts:

    def test_stale_update(self, store, make_change):
        change = make_change()
        with store.atomic():
            store.save_changes(1, [change], 0)
        with store.atomic():
            store.save_changes(1, [change], 1)

        with pytest.raises(ConflictError) as exc:
            with store.atomic():
                store.save_changes(1, [], 1)
        assert exc.value.expected_version == 1
        assert exc.value.actual_version == 2
        assert len(store.load_changes(1).changes) == 1

    def test_duplicate_first_write(self, store, make_change):
        with store.atomic():
            store.save_changes(1, [make_change()], 0)
        with pytest.raises(ConflictError) as exc:
            with store.atomic():
                store.save_changes(1, [], 0)
        assert exc.value.actual_version == 1

    def test_update_on_missing_document(self, store):
        with pytest.raises(ConflictError) as exc:
            store.save_changes(7, [], 3)
        assert exc.value.actual_version is None


class TestAtomic:

    def test_rollback_on_error(self, store, make_change):
        with pytest.raises(RuntimeError):
            with store.atomic():
                store.save_changes(1, [make_change()], 0)
                raise RuntimeError("boom")
        assert store.load_changes(1).version == 0


class TestChangeSet:

    def test_find_by_id_or_number(self, make_change):
        change = make_change()
        current = ChangeSet(project_id=1, changes=(change,), version=1)
        assert current.find(change.id) is change
        assert current.find(change.change_number) is change
        with pytest.raises(NotFoundError):
            current.find("missing")

    def test_with_change_replaces_or_appends(self, make_change):
        a, b = make_change(), make_change()
        current = ChangeSet(project_id=1, changes=(a,), version=1)
        updated = replace(a, title="Renamed")
        assert current.with_change(updated) == (updated,)
        assert current.with_change(b) == (a, b)

    def test_next_sequence_uses_highest_number(self, make_change):
        a, b = make_change(), make_change()
        current = ChangeSet(project_id=1, changes=(b, a), version=2)
        assert current.next_sequence == 3
