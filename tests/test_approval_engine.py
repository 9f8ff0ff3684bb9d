"""
Tests for the approval request engine (approval_service).

Covers:
  - create: PENDING at step 1, next approver reported
  - one open request per (entity_type, entity_id); a new one after closure
  - partial unique index rejects a second open row even when the
    service-level check is bypassed
  - inactive / missing / mismatched workflow, foreign property
  - sequential approval: PENDING → IN_PROGRESS → APPROVED
  - rejection at any step is terminal
  - wrong step, wrong role, wrong business unit leave no response row
  - override: allowed at or above the step's minimum level only
  - terminal requests refuse further responses and cancellation
  - cancel: requester only
  - reads: detail, pending-for-me, list filters, stats
  - AuditLog rows for every transition
"""

import pytest
from sqlalchemy.exc import IntegrityError

from backoffice.models import db
from backoffice.models.approval import (
    ApprovalRequest,
    ApprovalStep,
    ApprovalStepResponse,
    ApprovalWorkflow,
)
from backoffice.models.audit import AuditLog
from backoffice.models.property import Property
from backoffice.services import approval_service
from backoffice.services.access_context import RoleGrant
from backoffice.utils.errors import E


# ── Helpers ─────────────────────────────────────────────────────────────


def _make_workflow(roles_and_options, name="Payment Approval", entity_type="RPT_PAYMENT",
                   is_active=True):
    """Create a workflow from [(role, {step options}), ...]."""
    wf = ApprovalWorkflow(name=name, entity_type=entity_type, is_active=is_active)
    wf.steps = [
        ApprovalStep(step_order=i, step_name=f"Step {i}", role_id=role.id, **options)
        for i, (role, options) in enumerate(roles_and_options, start=1)
    ]
    db.session.add(wf)
    db.session.commit()
    return wf


def _make_property(bu, title_number="TCT-1001", status="ACTIVE"):
    prop = Property(
        business_unit_id=bu.id, title_number=title_number,
        property_name=f"Lot {title_number}", location="Makati", status=status,
    )
    db.session.add(prop)
    db.session.commit()
    return prop


def _responses(request_id):
    return db.session.execute(
        db.select(ApprovalStepResponse).filter_by(approval_request_id=request_id)
    ).scalars().all()


@pytest.fixture()
def workflow(roles):
    """Manager → Approver; the approver step may be overridden from level 3."""
    return _make_workflow([
        (roles.manager, {}),
        (roles.approver, {"can_override": True, "override_min_level": 3}),
    ])


@pytest.fixture()
def pending(workflow, people, ctx_of, head_office):
    result = approval_service.create_approval_request(
        ctx_of(people.requester), head_office.id, workflow.id, "RPT_PAYMENT", "PAY-1",
    )
    assert result["success"], result
    return result["data"]


def _respond(ctx_of, user, bu, request, step_order, status="APPROVED", **kw):
    wf = db.session.get(ApprovalWorkflow, request["workflow_id"])
    step = next(s for s in wf.steps if s.step_order == step_order)
    return approval_service.process_approval_response(
        ctx_of(user), bu.id, request["id"], step.id, status, **kw,
    )


# ═════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════


class TestCreateRequest:
    def test_opens_pending_at_step_one(self, workflow, people, ctx_of, head_office, roles):
        result = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, workflow.id, "RPT_PAYMENT", 42,
        )
        assert result["success"]
        data = result["data"]
        assert data["status"] == "PENDING"
        assert data["current_step_order"] == 1
        assert data["entity_id"] == "42"
        assert data["requested_by_id"] == people.requester.id
        assert result["next_approver"] == {
            "id": roles.manager.id, "name": "Manager", "level": 1,
        }

    def test_second_open_request_for_entity_refused(self, pending, workflow, people, ctx_of,
                                                    head_office):
        result = approval_service.create_approval_request(
            ctx_of(people.manager), head_office.id, workflow.id, "RPT_PAYMENT", "PAY-1",
        )
        assert result["success"] is False
        assert result["code"] == E.CONFLICT_DUPLICATE
        assert result["error"] == "There is already a pending approval request for this item"

    def test_new_request_allowed_after_rejection(self, pending, workflow, people, ctx_of,
                                                 head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1, "REJECTED")
        result = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, workflow.id, "RPT_PAYMENT", "PAY-1",
        )
        assert result["success"]
        assert result["data"]["id"] != pending["id"]

    def test_partial_index_backs_the_check(self, pending, workflow, people, head_office):
        db.session.add(ApprovalRequest(
            workflow_id=workflow.id, entity_type="RPT_PAYMENT", entity_id="PAY-1",
            business_unit_id=head_office.id, requested_by_id=people.requester.id,
            status="IN_PROGRESS",
        ))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

        # Terminal rows are outside the index.
        db.session.add(ApprovalRequest(
            workflow_id=workflow.id, entity_type="RPT_PAYMENT", entity_id="PAY-1",
            business_unit_id=head_office.id, requested_by_id=people.requester.id,
            status="CANCELLED",
        ))
        db.session.commit()

    def test_concurrent_create_loses_to_index(self, pending, workflow, people, ctx_of,
                                              head_office, monkeypatch):
        monkeypatch.setattr(approval_service, "_has_open_request", lambda *a: False)
        result = approval_service.create_approval_request(
            ctx_of(people.manager), head_office.id, workflow.id, "RPT_PAYMENT", "PAY-1",
        )
        assert result == {
            "success": False,
            "error": "There is already a pending approval request for this item",
            "code": E.CONFLICT_DUPLICATE,
        }
        count = db.session.execute(
            db.select(db.func.count(ApprovalRequest.id))
        ).scalar_one()
        assert count == 1

    def test_inactive_workflow(self, roles, people, ctx_of, head_office):
        wf = _make_workflow([(roles.manager, {})], is_active=False)
        result = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, wf.id, "RPT_PAYMENT", "PAY-9",
        )
        assert result["error"] == "Workflow not found or inactive"

    def test_missing_workflow(self, people, ctx_of, head_office):
        result = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, 999, "RPT_PAYMENT", "PAY-9",
        )
        assert result["error"] == "Workflow not found or inactive"

    def test_entity_type_must_match_workflow(self, workflow, people, ctx_of, head_office):
        result = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, workflow.id, "DOCUMENT_APPROVAL", "DOC-1",
        )
        assert result["success"] is False
        assert result["code"] == E.VALIDATION_CONSTRAINT

    def test_property_from_other_business_unit(self, workflow, people, ctx_of, head_office,
                                               branch_office):
        foreign = _make_property(branch_office)
        result = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, workflow.id, "RPT_PAYMENT", "PAY-2",
            property_id=foreign.id,
        )
        assert result["code"] == E.NOT_FOUND
        assert result["error"] == "Property not found"

    def test_outsider_denied(self, workflow, people, ctx_of, head_office):
        result = approval_service.create_approval_request(
            ctx_of(people.outsider), head_office.id, workflow.id, "RPT_PAYMENT", "PAY-3",
        )
        assert result["code"] == E.FORBIDDEN
        assert db.session.execute(db.select(ApprovalRequest)).first() is None


# ═════════════════════════════════════════════════════════════════════════
# RESPONSES
# ═════════════════════════════════════════════════════════════════════════


class TestSequentialApproval:
    def test_full_approval_path(self, pending, people, ctx_of, head_office, roles):
        first = _respond(ctx_of, people.manager, head_office, pending, 1, comments="Looks fine")
        assert first["success"]
        assert first["status"] == "IN_PROGRESS"
        assert first["is_completed"] is False
        assert first["next_step"]["step_order"] == 2
        assert first["next_step"]["role"]["id"] == roles.approver.id

        second = _respond(ctx_of, people.approver, head_office, pending, 2)
        assert second["status"] == "APPROVED"
        assert second["is_completed"] is True
        assert second["next_step"] is None

        req = db.session.get(ApprovalRequest, pending["id"])
        assert req.completed_at is not None
        assert req.is_overridden is False
        responses = _responses(req.id)
        assert [(r.step_order, r.status) for r in responses] == [(1, "APPROVED"), (2, "APPROVED")]
        assert responses[0].comments == "Looks fine"

    def test_single_step_workflow_approves_at_once(self, roles, people, ctx_of, head_office):
        wf = _make_workflow([(roles.approver, {})], name="One Step")
        created = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, wf.id, "RPT_PAYMENT", "PAY-7",
        )["data"]
        result = _respond(ctx_of, people.approver, head_office, created, 1)
        assert result["status"] == "APPROVED"

    def test_rejection_is_terminal(self, pending, people, ctx_of, head_office):
        rejected = _respond(ctx_of, people.manager, head_office, pending, 1, "REJECTED",
                            comments="Missing receipts")
        assert rejected["status"] == "REJECTED"
        assert rejected["is_completed"] is True

        again = _respond(ctx_of, people.manager, head_office, pending, 1)
        assert again["success"] is False
        assert again["error"] == "Approval request is not pending"
        assert len(_responses(pending["id"])) == 1

    def test_rejection_mid_chain_closes_later_steps(self, roles, people, ctx_of, head_office):
        wf = _make_workflow(
            [(roles.manager, {}), (roles.approver, {}), (roles.director, {})], name="Three Step",
        )
        created = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, wf.id, "RPT_PAYMENT", "PAY-3",
        )["data"]

        assert _respond(ctx_of, people.manager, head_office, created, 1)["status"] == "IN_PROGRESS"
        rejected = _respond(ctx_of, people.approver, head_office, created, 2, "REJECTED")
        assert rejected["status"] == "REJECTED"

        third = _respond(ctx_of, people.director, head_office, created, 3)
        assert third["success"] is False
        assert third["error"] == "Approval request is not pending"
        assert [(r.step_order, r.status) for r in _responses(created["id"])] == [
            (1, "APPROVED"), (2, "REJECTED"),
        ]
        assert db.session.get(ApprovalRequest, created["id"]).current_step_order == 2

    def test_rejection_at_last_step(self, pending, people, ctx_of, head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1)
        result = _respond(ctx_of, people.approver, head_office, pending, 2, "REJECTED")
        assert result["status"] == "REJECTED"

    def test_wrong_step_refused(self, pending, people, ctx_of, head_office):
        result = _respond(ctx_of, people.approver, head_office, pending, 2)
        assert result["success"] is False
        assert result["error"] == "Invalid approval step"
        assert _responses(pending["id"]) == []

    def test_wrong_role_refused(self, pending, people, ctx_of, head_office):
        result = _respond(ctx_of, people.approver, head_office, pending, 1)
        assert result["code"] == E.FORBIDDEN
        assert result["error"] == "Insufficient permissions to approve this step"
        assert _responses(pending["id"]) == []
        assert db.session.get(ApprovalRequest, pending["id"]).status == "PENDING"

    def test_invalid_status_refused(self, pending, people, ctx_of, head_office):
        result = _respond(ctx_of, people.manager, head_office, pending, 1, "MAYBE")
        assert result["code"] == E.VALIDATION_CONSTRAINT

    def test_other_business_unit_cannot_see_request(self, pending, people, ctx_of, branch_office):
        result = _respond(ctx_of, people.outsider, branch_office, pending, 1)
        assert result["code"] == E.NOT_FOUND
        assert result["error"] == "Approval request not found"

    def test_unassigned_business_unit_denied(self, pending, people, ctx_of, head_office):
        result = _respond(ctx_of, people.outsider, head_office, pending, 1)
        assert result["code"] == E.FORBIDDEN
        assert result["error"] == "Access denied to this business unit"

    def test_audit_trail(self, pending, people, ctx_of, head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1)
        _respond(ctx_of, people.approver, head_office, pending, 2, "REJECTED")
        actions = db.session.execute(
            db.select(AuditLog.action)
            .filter_by(entity="ApprovalRequest", entity_id=str(pending["id"]))
            .order_by(AuditLog.id)
        ).scalars().all()
        assert actions == ["CREATE", "APPROVE", "REJECT"]


class TestOverride:
    def test_director_overrides_step(self, pending, people, ctx_of, head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1)
        result = _respond(ctx_of, people.director, head_office, pending, 2, is_override=True,
                          comments="Urgent")
        assert result["status"] == "OVERRIDDEN"
        assert result["is_completed"] is True

        req = db.session.get(ApprovalRequest, pending["id"])
        assert req.is_overridden is True
        assert req.overridden_by_id == people.director.id
        assert req.overridden_at is not None
        assert req.completed_at is not None
        assert _responses(req.id)[-1].is_override is True

    def test_override_at_first_step_skips_remaining(self, roles, people, ctx_of, head_office):
        wf = _make_workflow(
            [
                (roles.manager, {"can_override": True, "override_min_level": 3}),
                (roles.approver, {}),
                (roles.staff, {}),
            ],
            name="Three Step Override",
        )
        created = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, wf.id, "RPT_PAYMENT", "PAY-9",
        )["data"]

        result = _respond(ctx_of, people.director, head_office, created, 1, is_override=True)
        assert result["status"] == "OVERRIDDEN"
        assert result["next_step"] is None

        req = db.session.get(ApprovalRequest, created["id"])
        assert req.current_step_order == 1
        assert req.is_overridden is True
        assert req.overridden_by_id == people.director.id
        assert len(_responses(req.id)) == 1

        later = _respond(ctx_of, people.approver, head_office, created, 2)
        assert later["error"] == "Approval request is not pending"

    def test_override_with_reject_status_still_overrides(self, pending, people, ctx_of,
                                                         head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1)
        result = _respond(ctx_of, people.director, head_office, pending, 2, "REJECTED",
                          is_override=True)
        assert result["status"] == "OVERRIDDEN"

    def test_override_below_min_level_refused(self, pending, people, ctx_of, head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1)
        result = _respond(ctx_of, people.manager, head_office, pending, 2, is_override=True)
        assert result["code"] == E.FORBIDDEN
        assert db.session.get(ApprovalRequest, pending["id"]).status == "IN_PROGRESS"

    def test_override_not_allowed_on_step(self, pending, people, ctx_of, head_office):
        # Step 1 has can_override=False.
        result = _respond(ctx_of, people.director, head_office, pending, 1, is_override=True)
        assert result["code"] == E.FORBIDDEN

    def test_non_override_from_other_role_refused(self, pending, people, ctx_of, head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1)
        result = _respond(ctx_of, people.director, head_office, pending, 2)
        assert result["code"] == E.FORBIDDEN

    def test_overridden_request_is_immutable(self, pending, people, ctx_of, head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1)
        _respond(ctx_of, people.director, head_office, pending, 2, is_override=True)
        result = _respond(ctx_of, people.approver, head_office, pending, 2)
        assert result["error"] == "Approval request is not pending"


class TestCanRespond:
    def _step(self, role_id=1, can_override=False, override_min_level=None):
        return ApprovalStep(step_order=1, step_name="S", role_id=role_id,
                            can_override=can_override, override_min_level=override_min_level)

    def test_own_role(self):
        role = RoleGrant(id=1, name="Manager", level=0)
        assert approval_service.can_respond(role, self._step(), is_override=False)

    def test_other_role_without_override(self):
        role = RoleGrant(id=2, name="Director", level=4)
        assert not approval_service.can_respond(role, self._step(can_override=True), False)

    def test_override_level_threshold(self):
        step = self._step(can_override=True, override_min_level=3)
        assert approval_service.can_respond(RoleGrant(id=2, name="D", level=3), step, True)
        assert not approval_service.can_respond(RoleGrant(id=2, name="A", level=2), step, True)

    def test_missing_min_level_means_any_level(self):
        step = self._step(can_override=True)
        assert approval_service.can_respond(RoleGrant(id=2, name="S", level=0), step, True)


# ═════════════════════════════════════════════════════════════════════════
# CANCEL
# ═════════════════════════════════════════════════════════════════════════


class TestCancel:
    def test_requester_cancels(self, pending, people, ctx_of, head_office):
        result = approval_service.cancel_approval_request(
            ctx_of(people.requester), head_office.id, pending["id"],
        )
        assert result["success"]
        assert result["data"]["status"] == "CANCELLED"
        assert result["data"]["completed_at"] is not None

    def test_cancel_in_progress(self, pending, people, ctx_of, head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1)
        result = approval_service.cancel_approval_request(
            ctx_of(people.requester), head_office.id, pending["id"],
        )
        assert result["data"]["status"] == "CANCELLED"

    def test_only_requester_may_cancel(self, pending, people, ctx_of, head_office):
        result = approval_service.cancel_approval_request(
            ctx_of(people.director), head_office.id, pending["id"],
        )
        assert result["code"] == E.FORBIDDEN
        assert db.session.get(ApprovalRequest, pending["id"]).status == "PENDING"

    def test_terminal_request_cannot_be_cancelled(self, pending, people, ctx_of, head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1, "REJECTED")
        result = approval_service.cancel_approval_request(
            ctx_of(people.requester), head_office.id, pending["id"],
        )
        assert result["success"] is False
        assert result["error"] == "Approval request not found or cannot be cancelled"
        assert db.session.get(ApprovalRequest, pending["id"]).status == "REJECTED"

    def test_cancelled_request_refuses_responses(self, pending, people, ctx_of, head_office):
        approval_service.cancel_approval_request(
            ctx_of(people.requester), head_office.id, pending["id"],
        )
        result = _respond(ctx_of, people.manager, head_office, pending, 1)
        assert result["error"] == "Approval request is not pending"


# ═════════════════════════════════════════════════════════════════════════
# READS
# ═════════════════════════════════════════════════════════════════════════


class TestReads:
    def test_detail(self, pending, people, ctx_of, head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1, comments="ok")
        data = approval_service.get_approval_request_by_id(
            ctx_of(people.requester), head_office.id, pending["id"],
        )["data"]
        assert data["status"] == "IN_PROGRESS"
        assert [s["step_order"] for s in data["workflow"]["steps"]] == [1, 2]
        assert data["current_step"]["step_order"] == 2
        assert len(data["responses"]) == 1
        assert data["responses"][0]["step_name"] == "Step 1"
        assert data["responses"][0]["responded_by"]["username"] == "manager"

    def test_detail_of_terminal_request_has_no_current_step(self, pending, people, ctx_of,
                                                             head_office):
        _respond(ctx_of, people.manager, head_office, pending, 1, "REJECTED")
        data = approval_service.get_approval_request_by_id(
            ctx_of(people.requester), head_office.id, pending["id"],
        )["data"]
        assert data["current_step"] is None

    def test_pending_for_me_follows_current_step(self, pending, people, ctx_of, head_office):
        mine = approval_service.get_pending_for_me(ctx_of(people.manager), head_office.id)
        assert [r["id"] for r in mine["data"]] == [pending["id"]]
        assert approval_service.get_pending_for_me(
            ctx_of(people.approver), head_office.id)["data"] == []

        _respond(ctx_of, people.manager, head_office, pending, 1)
        assert approval_service.get_pending_for_me(
            ctx_of(people.manager), head_office.id)["data"] == []
        assert len(approval_service.get_pending_for_me(
            ctx_of(people.approver), head_office.id)["data"]) == 1

    def test_list_filters(self, pending, workflow, people, ctx_of, head_office):
        second = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, workflow.id, "RPT_PAYMENT", "PAY-2",
        )["data"]
        _respond(ctx_of, people.manager, head_office, second, 1, "REJECTED")

        ctx = ctx_of(people.director)
        all_rows = approval_service.get_approval_requests(ctx, head_office.id)
        assert all_rows["pagination"]["total_count"] == 2

        rejected = approval_service.get_approval_requests(ctx, head_office.id, status="REJECTED")
        assert [r["id"] for r in rejected["data"]] == [second["id"]]

        bad = approval_service.get_approval_requests(ctx, head_office.id, status="LOST")
        assert bad["code"] == E.VALIDATION_CONSTRAINT

    def test_list_is_scoped_to_business_unit(self, pending, people, ctx_of, branch_office):
        result = approval_service.get_approval_requests(ctx_of(people.outsider), branch_office.id)
        assert result["data"] == []

    def test_list_search_by_property(self, workflow, people, ctx_of, head_office):
        prop = _make_property(head_office, title_number="TCT-7788")
        approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, workflow.id, "RPT_PAYMENT", "PAY-5",
            property_id=prop.id,
        )
        approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, workflow.id, "RPT_PAYMENT", "PAY-6",
        )
        result = approval_service.get_approval_requests(
            ctx_of(people.requester), head_office.id, search="7788",
        )
        assert [r["entity_id"] for r in result["data"]] == ["PAY-5"]
        assert result["data"][0]["property"]["title_number"] == "TCT-7788"

    def test_active_workflows(self, workflow, roles, people, ctx_of, head_office):
        _make_workflow([(roles.manager, {})], name="Dormant", is_active=False)
        data = approval_service.get_active_workflows(ctx_of(people.requester), head_office.id)
        assert [w["name"] for w in data["data"]] == ["Payment Approval"]

    def test_stats(self, pending, workflow, people, ctx_of, head_office):
        second = approval_service.create_approval_request(
            ctx_of(people.requester), head_office.id, workflow.id, "RPT_PAYMENT", "PAY-2",
        )["data"]
        _respond(ctx_of, people.manager, head_office, second, 1, "REJECTED")

        data = approval_service.get_approval_stats(ctx_of(people.director), head_office.id)["data"]
        assert data["total"] == 2
        assert data["pending"] == 1
        assert data["rejected"] == 1
        assert data["approved"] == 0
        assert data["by_workflow"] == {"Payment Approval": 2}
        assert data["avg_processing_days"] >= 0
