from __future__ import annotations

import pytest

from conftest import all_audit_logs, reload
from voter_portal.models.audit_log import AuditAction
from voter_portal.models.reference import ReferenceStatus
from voter_portal.services.errors import InvalidStatusTransition, ReferenceNotFoundError
from voter_portal.services.reference_validator import ValidatedReference
from voter_portal.services.status_workflow import can_transition

P, C, A = ReferenceStatus.PENDING, ReferenceStatus.CONTACTED, ReferenceStatus.APPLIED


def _seed(services, voter, contact="9876500001"):
    (ref,) = services.store.create_many(
        voter.id, [ValidatedReference(reference_name="Anil", reference_contact=contact)]
    )
    return ref


@pytest.mark.parametrize("current, new", [(P, C), (C, A), (A, P), (A, C), (P, A), (C, C)])
def test_can_transition_is_permissive_by_default(current, new):
    assert can_transition(current, new)[0] is True


@pytest.mark.parametrize("current, new", [(A, P), (A, C), (C, P)])
def test_can_transition_forward_only_refuses_backwards(current, new):
    allowed, why = can_transition(current, new, forward_only=True)
    assert allowed is False
    assert why.startswith("backward:")


async def test_status_change_is_audited_as_admin(build, voter, session_factory):
    services = build()
    ref = _seed(services, voter)

    change = await services.workflow.change_status(ref.id, C, "admin-7")
    await services.supervisor.drain(5)

    assert change.old_status == P
    assert change.new_status == C
    row = reload(session_factory, ref.id)
    assert row.status == C
    assert row.status_updated_at is not None

    (log,) = [log for log in all_audit_logs(session_factory) if log.action == AuditAction.UPDATE]
    assert log.entity_id == ref.id
    assert log.admin_id == "admin-7"
    assert log.user_id is None
    assert log.old_values["status"] == "PENDING"
    assert log.new_values["status"] == "CONTACTED"


async def test_backward_move_allowed_by_default(build, voter, session_factory):
    services = build()
    ref = _seed(services, voter)

    await services.workflow.change_status(ref.id, A, "admin-7")
    await services.workflow.change_status(ref.id, P, "admin-7")
    await services.supervisor.drain(5)

    assert reload(session_factory, ref.id).status == P


async def test_same_status_restamps_timestamp(build, voter, session_factory):
    services = build()
    ref = _seed(services, voter)

    first = await services.workflow.change_status(ref.id, P, "admin-7")
    await services.supervisor.drain(5)

    assert first.old_status == first.new_status == P
    assert reload(session_factory, ref.id).status_updated_at is not None


async def test_forward_only_rejects_backward_move(build, voter, session_factory):
    services = build(reference_forward_only_status=True)
    ref = _seed(services, voter)

    await services.workflow.change_status(ref.id, A, "admin-7")
    with pytest.raises(InvalidStatusTransition):
        await services.workflow.change_status(ref.id, C, "admin-7")
    await services.supervisor.drain(5)

    assert reload(session_factory, ref.id).status == A


async def test_unknown_reference(build):
    services = build()
    with pytest.raises(ReferenceNotFoundError):
        await services.workflow.change_status("missing", C, "admin-7")
    assert services.supervisor.pending == 0
