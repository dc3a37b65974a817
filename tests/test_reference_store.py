from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import all_references, reload
from voter_portal.models.reference import ReferenceStatus
from voter_portal.services.dedup import partition_existing
from voter_portal.services.errors import PersistenceError, ReferenceNotFoundError
from voter_portal.services.reference_store import ReferenceStore
from voter_portal.services.reference_validator import ValidatedReference


def _refs(*pairs):
    return [ValidatedReference(reference_name=n, reference_contact=c) for n, c in pairs]


@pytest.fixture
def store(session_factory) -> ReferenceStore:
    return ReferenceStore(session_factory)


def test_create_many_sets_initial_state(store, voter, session_factory):
    created = store.create_many(voter.id, _refs(("A", "9876500001"), ("B", "9876500002")))

    assert [r.reference_contact for r in created] == ["9876500001", "9876500002"]
    rows = all_references(session_factory, voter.id)
    assert len(rows) == 2
    for row in rows:
        assert row.status == ReferenceStatus.PENDING
        assert row.whatsapp_sent is False
        assert row.whatsapp_sent_at is None
        assert row.status_updated_at is None


def test_create_many_is_all_or_nothing(store, voter, session_factory):
    store.create_many(voter.id, _refs(("A", "9876500001")))

    # second row collides with the stored (user, contact) pair
    with pytest.raises(PersistenceError) as ei:
        store.create_many(voter.id, _refs(("B", "9876500002"), ("A dup", "9876500001"), ("C", "9876500003")))

    assert ei.value.code == "REFERENCE_CREATION_FAILED"
    contacts = sorted(r.reference_contact for r in all_references(session_factory, voter.id))
    assert contacts == ["9876500001"]


def test_partition_existing_skips_known_contacts(store, voter):
    store.create_many(voter.id, _refs(("A", "9876500001")))

    result = partition_existing(store, voter.id, _refs(("A", "9876500001"), ("B", "9876500002")))

    assert [v.reference_contact for v in result.to_create] == ["9876500002"]
    assert [r.reference_contact for r in result.skipped] == ["9876500001"]
    assert result.skipped_count == 1


def test_partition_existing_is_scoped_to_the_voter(store, voter, session_factory):
    from voter_portal.models.voter import Voter

    with session_factory() as session:
        other = Voter(full_name="Asha", contact="9876511111")
        session.add(other)
        session.commit()
        session.refresh(other)

    store.create_many(other.id, _refs(("A", "9876500001")))
    result = partition_existing(store, voter.id, _refs(("A", "9876500001")))

    assert len(result.to_create) == 1
    assert result.skipped == []


def test_update_delivery_status(store, voter, session_factory):
    (ref,) = store.create_many(voter.id, _refs(("A", "9876500001")))
    when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    snap = store.update_delivery_status(ref.id, True, sent_at=when)
    assert snap["whatsapp_sent"] is True
    row = reload(session_factory, ref.id)
    assert row.whatsapp_sent is True
    assert row.whatsapp_sent_at is not None

    store.update_delivery_status(ref.id, False)
    row = reload(session_factory, ref.id)
    assert row.whatsapp_sent is False
    assert row.whatsapp_sent_at is None


def test_update_delivery_status_missing_row(store):
    assert store.update_delivery_status("missing", True) is None


def test_update_status_returns_old_and_new(store, voter, session_factory):
    (ref,) = store.create_many(voter.id, _refs(("A", "9876500001")))

    old, new = store.update_status(ref.id, ReferenceStatus.CONTACTED)

    assert old["status"] == ReferenceStatus.PENDING
    assert new["status"] == ReferenceStatus.CONTACTED
    assert new["status_updated_at"] is not None
    assert reload(session_factory, ref.id).status == ReferenceStatus.CONTACTED


def test_update_status_unknown_reference(store):
    with pytest.raises(ReferenceNotFoundError):
        store.update_status("missing", ReferenceStatus.APPLIED)


def test_search_filters_and_paginates(store, voter):
    created = store.create_many(
        voter.id,
        _refs(("Anil", "9876500001"), ("Bina", "9876500002"), ("Chetan", "9876500003")),
    )
    store.update_status(created[1].id, ReferenceStatus.APPLIED)

    rows, total = store.search(q="bin")
    assert total == 1
    assert rows[0].reference_name == "Bina"

    rows, total = store.search(q="500003")
    assert [r.reference_name for r in rows] == ["Chetan"]

    rows, total = store.search(status=ReferenceStatus.PENDING, user_id=voter.id)
    assert total == 2

    rows, total = store.search(limit=2, offset=0, sort_by="reference_name", sort_order="asc")
    assert total == 3
    assert [r.reference_name for r in rows] == ["Anil", "Bina"]


def test_list_for_user(store, voter):
    store.create_many(voter.id, _refs(("A", "9876500001"), ("B", "9876500002")))
    assert len(store.list_for_user(voter.id)) == 2
    assert store.list_for_user("nobody") == []
