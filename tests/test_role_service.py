"""
Tests for role & permission management (role_service).

Covers:
  - create with a permission set; unique names; level range; module checks
  - permission replacement is wholesale
  - delete refused while members or workflow steps use the role
  - seed_default_roles is idempotent
  - reads: list with member counts, available roles, stats
"""

from backoffice.models import db
from backoffice.models.approval import ApprovalStep, ApprovalWorkflow
from backoffice.models.auth import Role, RolePermission
from backoffice.services import role_service
from backoffice.utils.errors import E


def _perms(*modules, **flags):
    return [{"module": m, "can_read": True, **flags} for m in modules]


class TestCreateRole:
    def test_create_with_permissions(self, people, ctx_of, head_office):
        result = role_service.create_role(
            ctx_of(people.director), head_office.id, name="Treasurer",
            permissions=_perms("RPT", "REPORTS", can_approve=True),
            description="Signs off tax payments", level=3,
        )
        assert result["success"], result
        data = result["data"]
        assert data["level_label"] == "Director"
        assert {p["module"] for p in data["permissions"]} == {"RPT", "REPORTS"}
        assert all(p["can_approve"] for p in data["permissions"])

    def test_duplicate_name(self, people, ctx_of, head_office, roles):
        result = role_service.create_role(
            ctx_of(people.director), head_office.id, name="Manager", permissions=_perms("RPT"),
        )
        assert result["code"] == E.CONFLICT_DUPLICATE

    def test_level_out_of_range(self, people, ctx_of, head_office):
        result = role_service.create_role(
            ctx_of(people.director), head_office.id, name="Chief", permissions=_perms("RPT"),
            level=9,
        )
        assert result["error"] == "Role level must be between 0 and 4"

    def test_unknown_and_duplicate_modules(self, people, ctx_of, head_office):
        ctx = ctx_of(people.director)
        unknown = role_service.create_role(
            ctx, head_office.id, name="X", permissions=_perms("PAYROLL"),
        )
        assert unknown["success"] is False
        duplicate = role_service.create_role(
            ctx, head_office.id, name="Y", permissions=_perms("RPT", "RPT"),
        )
        assert duplicate["success"] is False
        empty = role_service.create_role(ctx, head_office.id, name="Z", permissions=[])
        assert empty["error"] == "At least one permission is required"

    def test_outsider_denied(self, people, ctx_of, head_office):
        result = role_service.create_role(
            ctx_of(people.outsider), head_office.id, name="Nope", permissions=_perms("RPT"),
        )
        assert result["code"] == E.FORBIDDEN


class TestUpdateRole:
    def test_update_fields(self, people, ctx_of, head_office, roles):
        result = role_service.update_role(
            ctx_of(people.director), head_office.id, roles.manager.id,
            name="Branch Manager", level=2,
        )
        assert result["data"]["name"] == "Branch Manager"
        assert result["data"]["level"] == 2

    def test_replace_permissions(self, people, ctx_of, head_office, roles):
        result = role_service.update_role_permissions(
            ctx_of(people.director), head_office.id, roles.manager.id,
            _perms("APPROVAL", "DOCUMENTS", can_update=True),
        )
        assert result["success"], result
        modules = db.session.execute(
            db.select(RolePermission.module).filter_by(role_id=roles.manager.id)
        ).scalars().all()
        assert sorted(modules) == ["APPROVAL", "DOCUMENTS"]

    def test_missing_role(self, people, ctx_of, head_office):
        result = role_service.update_role(ctx_of(people.director), head_office.id, 999, name="X")
        assert result["code"] == E.NOT_FOUND


class TestDeleteRole:
    def test_delete_unused_role(self, people, ctx_of, head_office):
        ctx = ctx_of(people.director)
        created = role_service.create_role(
            ctx, head_office.id, name="Temp", permissions=_perms("RPT"),
        )["data"]
        result = role_service.delete_role(ctx, head_office.id, created["id"])
        assert result["success"]
        assert db.session.get(Role, created["id"]) is None
        assert db.session.execute(
            db.select(RolePermission).filter_by(role_id=created["id"])
        ).first() is None

    def test_role_with_members_kept(self, people, ctx_of, head_office, roles):
        result = role_service.delete_role(ctx_of(people.director), head_office.id, roles.manager.id)
        assert result["code"] == E.CONFLICT_STATE
        assert result["error"] == (
            "Cannot delete role with active members. Please reassign users first."
        )

    def test_role_used_by_step_kept(self, people, ctx_of, head_office):
        ctx = ctx_of(people.director)
        created = role_service.create_role(
            ctx, head_office.id, name="Auditor", permissions=_perms("AUDIT"),
        )["data"]
        wf = ApprovalWorkflow(name="Audit Flow", entity_type="DOCUMENT_APPROVAL")
        wf.steps = [ApprovalStep(step_order=1, step_name="Audit", role_id=created["id"])]
        db.session.add(wf)
        db.session.commit()

        result = role_service.delete_role(ctx, head_office.id, created["id"])
        assert result["success"] is False
        assert db.session.get(Role, created["id"]) is not None


class TestReadsAndSeed:
    def test_list_with_member_counts(self, people, ctx_of, head_office):
        data = role_service.list_roles(ctx_of(people.requester), head_office.id)["data"]
        counts = {r["name"]: r["member_count"] for r in data}
        # Director has two members: one per business unit.
        assert counts == {"Director": 2, "Approver": 1, "Manager": 1, "Staff": 1}
        assert [r["name"] for r in data][0] == "Director"

    def test_search(self, people, ctx_of, head_office):
        data = role_service.list_roles(ctx_of(people.requester), head_office.id, search="prov")
        assert [r["name"] for r in data["data"]] == ["Approver"]

    def test_available_roles(self, people, ctx_of, head_office):
        data = role_service.get_available_roles(ctx_of(people.requester), head_office.id)["data"]
        assert [r["level"] for r in data] == [3, 2, 1, 0]

    def test_stats(self, people, ctx_of, head_office):
        data = role_service.get_role_stats(ctx_of(people.requester), head_office.id)["data"]
        assert data["total_roles"] == 4
        assert data["total_permissions"] == 8
        assert data["by_level"]["Department Head"] == 1

    def test_seed_is_idempotent(self):
        assert role_service.seed_default_roles() == 5
        db.session.commit()
        assert role_service.seed_default_roles() == 0
        admin = db.session.execute(
            db.select(Role).filter_by(name="System Admin")
        ).scalar_one()
        assert len(admin.permissions) == 10
