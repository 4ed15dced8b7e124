"""End-to-end tests for the /maintenance/requests handlers."""
import pytest

from gearguard.core import maintenance as maintenance_service
from gearguard.models.models import MaintenanceRequest


def _create_payload(equipment, category, **overrides):
    payload = {
        "subject": "Hydraulic press leaking",
        "description": "Oil puddle under press 2",
        "maintenance_for": "EQUIPMENT",
        "maintenance_type": "CORRECTIVE",
        "equipment_id": equipment.id,
        "category_id": category.id,
        "priority": "HIGH",
    }
    payload.update(overrides)
    return payload


def test_full_assignment_flow(
    client, db, make_user, employee, technician, technician_b, admin,
    team, add_member, equipment, category, auth_headers,
):
    tech_c = make_user("tech_c", "TECHNICIAN")
    add_member(technician, team)
    add_member(technician_b, team)

    # 1) employee creates a request for a piece of equipment
    resp = client.post(
        "/maintenance/requests",
        json=_create_payload(equipment, category),
        headers=auth_headers(employee),
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "NEW"
    assert created["created_by_id"] == employee.id
    assert created["equipment_id"] == equipment.id
    assert created["work_center_id"] is None
    assert created["assigned_to_id"] is None
    request_id = created["id"]

    # 2) admin routes it to the team; no assignee yet so status stays NEW
    resp = client.patch(
        f"/maintenance/requests/{request_id}/assign",
        json={"team_id": team.id},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["team_id"] == team.id
    assert resp.json()["status"] == "NEW"

    # 3) a team technician takes it
    resp = client.patch(
        f"/maintenance/requests/{request_id}/assign",
        json={"assign_to_self": True},
        headers=auth_headers(technician),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["assigned_to_id"] == technician.id
    assert data["status"] == "ASSIGNED"
    assert data["assigned_to"]["username"] == technician.username

    # 4) a second technician cannot take it over
    resp = client.patch(
        f"/maintenance/requests/{request_id}/assign",
        json={"assign_to_self": True},
        headers=auth_headers(technician_b),
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["reason"] == "AssignedToOther"

    # 5) admin reassigns to a technician outside the team
    resp = client.patch(
        f"/maintenance/requests/{request_id}/assign",
        json={"assigned_to_id": tech_c.id},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["assigned_to_id"] == tech_c.id
    assert resp.json()["status"] == "ASSIGNED"

    stored = db.query(MaintenanceRequest).filter(MaintenanceRequest.id == request_id).first()
    db.refresh(stored)
    assert stored.assigned_to_id == tech_c.id
    assert stored.created_by_id == employee.id


class TestCreate:
    def test_requires_auth(self, client, equipment, category):
        resp = client.post("/maintenance/requests", json=_create_payload(equipment, category))
        assert resp.status_code == 401

    def test_technician_cannot_create(self, client, technician, equipment, category, auth_headers):
        resp = client.post(
            "/maintenance/requests",
            json=_create_payload(equipment, category),
            headers=auth_headers(technician),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "RoleNotPermitted"

    def test_missing_fields(self, client, employee, equipment, category, auth_headers):
        payload = _create_payload(equipment, category)
        del payload["priority"]
        resp = client.post("/maintenance/requests", json=payload, headers=auth_headers(employee))
        assert resp.status_code == 400
        assert resp.json()["detail"]["reason"] == "MissingFields"

    def test_invalid_target(self, client, employee, equipment, category, auth_headers):
        payload = _create_payload(equipment, category, equipment_id=None)
        resp = client.post("/maintenance/requests", json=payload, headers=auth_headers(employee))
        assert resp.status_code == 400
        assert resp.json()["detail"]["reason"] == "InvalidTarget"

    def test_work_center_request_drops_equipment(
        self, client, employee, equipment, work_center, category, auth_headers
    ):
        payload = _create_payload(
            equipment, category, maintenance_for="WORK_CENTER", work_center_id=work_center.id
        )
        resp = client.post("/maintenance/requests", json=payload, headers=auth_headers(employee))
        assert resp.status_code == 201
        data = resp.json()
        assert data["work_center_id"] == work_center.id
        assert data["equipment_id"] is None
        assert data["work_center"]["name"] == work_center.name

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"subject": {"x": 1}}, "InvalidValue"),
            ({"priority": ["HIGH"]}, "InvalidValue"),
            ({"maintenance_type": 5}, "InvalidValue"),
            ({"description": {"text": "leak"}}, "InvalidValue"),
            ({"category_id": [1]}, "InvalidValue"),
            ({"category_id": 1.5}, "InvalidValue"),
            ({"equipment_id": {"id": 1}}, "InvalidTarget"),
            ({"maintenance_for": ["EQUIPMENT"]}, "InvalidTarget"),
        ],
    )
    def test_malformed_fields(
        self, client, employee, equipment, category, auth_headers, overrides, reason
    ):
        payload = _create_payload(equipment, category, **overrides)
        resp = client.post("/maintenance/requests", json=payload, headers=auth_headers(employee))
        assert resp.status_code == 400
        assert resp.json()["detail"]["reason"] == reason


class TestRead:
    def test_missing_request_is_404_for_everyone(self, client, employee, admin, auth_headers):
        for user in (employee, admin):
            resp = client.get("/maintenance/requests/9999", headers=auth_headers(user))
            assert resp.status_code == 404

    def test_employee_sees_only_own(
        self, client, employee, other_employee, make_request, auth_headers
    ):
        request = make_request(employee)
        assert client.get(
            f"/maintenance/requests/{request.id}", headers=auth_headers(employee)
        ).status_code == 200
        assert client.get(
            f"/maintenance/requests/{request.id}", headers=auth_headers(other_employee)
        ).status_code == 403

    def test_team_membership_gates_technician_read(
        self, client, employee, technician, team, make_request, add_member, auth_headers
    ):
        # assigned by an admin, but not a member of the team
        request = make_request(employee, team=team, assigned_to=technician, status="ASSIGNED")
        resp = client.get(f"/maintenance/requests/{request.id}", headers=auth_headers(technician))
        assert resp.status_code == 403

        add_member(technician, team)
        resp = client.get(f"/maintenance/requests/{request.id}", headers=auth_headers(technician))
        assert resp.status_code == 200
        assert resp.json()["team"] == {"id": team.id, "name": team.name}

    def test_list_is_scoped(
        self, client, employee, other_employee, technician, admin, team, other_team,
        add_member, make_request, auth_headers,
    ):
        add_member(technician, team)
        own = make_request(employee, team=team)
        foreign = make_request(other_employee, team=other_team)

        resp = client.get("/maintenance/requests", headers=auth_headers(employee))
        assert [r["id"] for r in resp.json()] == [own.id]

        resp = client.get("/maintenance/requests", headers=auth_headers(technician))
        assert [r["id"] for r in resp.json()] == [own.id]

        resp = client.get("/maintenance/requests", headers=auth_headers(admin))
        assert [r["id"] for r in resp.json()] == [foreign.id, own.id]

    def test_list_paging_and_status_filter(self, client, admin, employee, make_request, auth_headers):
        first = make_request(employee)
        second = make_request(employee, status="IN_PROGRESS")
        third = make_request(employee)

        resp = client.get(
            "/maintenance/requests", params={"limit": 2, "offset": 1}, headers=auth_headers(admin)
        )
        assert [r["id"] for r in resp.json()] == [second.id, first.id]

        resp = client.get(
            "/maintenance/requests", params={"status": "NEW"}, headers=auth_headers(admin)
        )
        assert [r["id"] for r in resp.json()] == [third.id, first.id]

        resp = client.get("/maintenance/requests", params={"limit": 0}, headers=auth_headers(admin))
        assert resp.status_code == 422


class TestUpdate:
    def test_employee_cannot_update_even_own(self, client, employee, make_request, auth_headers):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            json={"status": "IN_PROGRESS"},
            headers=auth_headers(employee),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "RoleNotPermitted"

    def test_update_of_missing_request_is_404(self, client, employee, auth_headers):
        resp = client.patch(
            "/maintenance/requests/9999", json={"status": "X"}, headers=auth_headers(employee)
        )
        assert resp.status_code == 404

    def test_technician_update_drops_unlisted_fields(
        self, client, db, employee, technician, team, other_team, add_member, make_request, auth_headers
    ):
        add_member(technician, team)
        request = make_request(employee, team=team)
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            json={
                "assign_to_self": True,
                "status": "IN_PROGRESS",
                "scheduled_date": "2026-11-01T08:00:00Z",
                "duration_hours": 1.5,
                "team_id": other_team.id,
                "subject": "renamed",
            },
            headers=auth_headers(technician),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["assigned_to_id"] == technician.id
        assert data["status"] == "IN_PROGRESS"
        assert data["scheduled_date"].startswith("2026-11-01T08:00:00")
        assert data["duration_hours"] == 1.5
        assert data["team_id"] == team.id
        assert data["subject"] == request.subject

    def test_technician_blocked_when_assigned_to_other(
        self, client, employee, technician, technician_b, team, add_member, make_request, auth_headers
    ):
        add_member(technician, team)
        add_member(technician_b, team)
        request = make_request(employee, team=team, assigned_to=technician, status="ASSIGNED")
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            json={"status": "REPAIRED"},
            headers=auth_headers(technician_b),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "AssignedToOther"

    def test_update_does_not_infer_status(
        self, client, employee, technician, admin, make_request, auth_headers
    ):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            json={"assigned_to_id": technician.id},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["assigned_to_id"] == technician.id
        assert resp.json()["status"] == "NEW"

    def test_empty_patch_is_noop(self, client, employee, admin, make_request, auth_headers):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            json={"priority": "LOW"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["priority"] == "HIGH"

    def test_status_cannot_go_back_to_new(
        self, client, employee, admin, technician, make_request, auth_headers
    ):
        request = make_request(employee, assigned_to=technician, status="ASSIGNED")
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            json={"status": "NEW"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["reason"] == "InvalidStatus"

    def test_bad_schedule_date(self, client, employee, admin, make_request, auth_headers):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            json={"scheduled_date": "soon"},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["reason"] == "InvalidValue"

    @pytest.mark.parametrize(
        "body",
        [
            '{"duration_hours": 1e999}',
            '{"duration_hours": "inf"}',
            '{"duration_hours": "Infinity"}',
            '{"duration_hours": NaN}',
            '{"duration_hours": {"hours": 2}}',
            '{"duration_hours": [2]}',
            '{"scheduled_date": {"day": 1}}',
            '{"team_id": {"id": 1}}',
            '{"assigned_to_id": [2]}',
        ],
    )
    def test_bad_values_are_rejected_and_ticket_stays_readable(
        self, client, employee, admin, make_request, auth_headers, body
    ):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            content=body,
            headers={**auth_headers(admin), "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["reason"] == "InvalidValue"

        resp = client.get(f"/maintenance/requests/{request.id}", headers=auth_headers(admin))
        assert resp.status_code == 200
        assert resp.json()["duration_hours"] is None
        resp = client.get("/maintenance/requests", headers=auth_headers(admin))
        assert resp.status_code == 200

    def test_non_string_status(self, client, employee, admin, make_request, auth_headers):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            json={"status": {"name": "REPAIRED"}},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["reason"] == "InvalidStatus"

    def test_technician_updates_without_team_check_by_default(
        self, client, employee, technician, make_request, auth_headers
    ):
        request = make_request(employee, assigned_to=technician, status="ASSIGNED")
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            json={"status": "IN_PROGRESS"},
            headers=auth_headers(technician),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "IN_PROGRESS"

    def test_technician_update_when_writes_are_team_scoped(
        self, client, employee, technician, team, make_request, auth_headers, team_scoped_writes
    ):
        request = make_request(employee, team=team, assigned_to=technician, status="ASSIGNED")
        resp = client.patch(
            f"/maintenance/requests/{request.id}",
            json={"status": "IN_PROGRESS"},
            headers=auth_headers(technician),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "NotTeamMember"


class TestAssign:
    def test_employee_cannot_assign(self, client, employee, make_request, auth_headers):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}/assign",
            json={"assign_to_self": True},
            headers=auth_headers(employee),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "RoleNotPermitted"

    def test_technician_must_self_assign(
        self, client, employee, technician, technician_b, team, add_member, make_request, auth_headers
    ):
        add_member(technician, team)
        request = make_request(employee, team=team)
        resp = client.patch(
            f"/maintenance/requests/{request.id}/assign",
            json={"assigned_to_id": technician_b.id},
            headers=auth_headers(technician),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "SelfAssignOnly"

    def test_technician_takes_request_outside_own_teams(
        self, client, employee, technician, make_request, auth_headers
    ):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}/assign",
            json={"assign_to_self": True},
            headers=auth_headers(technician),
        )
        assert resp.status_code == 200
        assert resp.json()["assigned_to_id"] == technician.id
        assert resp.json()["status"] == "ASSIGNED"

    def test_technician_outside_team_when_writes_are_team_scoped(
        self, client, employee, technician, team, make_request, auth_headers, team_scoped_writes
    ):
        request = make_request(employee, team=team)
        resp = client.patch(
            f"/maintenance/requests/{request.id}/assign",
            json={"assign_to_self": True},
            headers=auth_headers(technician),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "NotTeamMember"

    def test_team_member_when_writes_are_team_scoped(
        self, client, employee, technician, team, add_member, make_request, auth_headers,
        team_scoped_writes,
    ):
        add_member(technician, team)
        request = make_request(employee, team=team)
        resp = client.patch(
            f"/maintenance/requests/{request.id}/assign",
            json={"assign_to_self": True},
            headers=auth_headers(technician),
        )
        assert resp.status_code == 200
        assert resp.json()["assigned_to_id"] == technician.id

    def test_status_path_assigns_too(
        self, client, employee, technician, admin, make_request, auth_headers
    ):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}/status",
            json={"assigned_to_id": technician.id},
            headers=auth_headers(admin),
        )
        assert resp.status_code == 200
        assert resp.json()["assigned_to_id"] == technician.id
        assert resp.json()["status"] == "ASSIGNED"

    @pytest.mark.parametrize(
        "body",
        [
            '{"assigned_to_id": 1e999}',
            '{"assigned_to_id": 1.5}',
            '{"assigned_to_id": {"id": 1}}',
            '{"team_id": [1]}',
            '{"team_id": 99999999999999999999}',
        ],
    )
    def test_admin_bad_ids(self, client, employee, admin, make_request, auth_headers, body):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}/assign",
            content=body,
            headers={**auth_headers(admin), "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["reason"] == "InvalidValue"

    def test_non_boolean_self_assign(
        self, client, employee, technician, make_request, auth_headers
    ):
        request = make_request(employee)
        resp = client.patch(
            f"/maintenance/requests/{request.id}/assign",
            json={"assign_to_self": {"yes": True}},
            headers=auth_headers(technician),
        )
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "SelfAssignOnly"

    def test_assign_missing_request(self, client, technician, auth_headers):
        resp = client.patch(
            "/maintenance/requests/9999/assign",
            json={"assign_to_self": True},
            headers=auth_headers(technician),
        )
        assert resp.status_code == 404


def test_unexpected_errors_are_generic(client, admin, auth_headers, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("connection string postgresql://secret")

    monkeypatch.setattr(maintenance_service, "list_requests", boom)
    resp = client.get("/maintenance/requests", headers=auth_headers(admin))
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Internal server error"}
    assert "secret" not in resp.text
