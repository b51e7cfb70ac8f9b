"""
Change Control API Tests: HTTP surface of the change blueprint:
  - Create / list / get with available transitions
  - Error code mapping (400, 403, 404, 409, 422)
  - Committee voting endpoints
  - Notifications listing and mark-read
"""

import pytest


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _h(email):
    return {"X-User-Email": email}


def _create(client, pid, email="dev@example.com", **overrides):
    body = {
        "title": "Replace label printers",
        "description": "Current printers are end of life",
        "category": "resources",
        "impact_cost": 1_500,
        "impact_schedule": 1,
    }
    body.update(overrides)
    return client.post(f"/api/v1/projects/{pid}/changes", json=body, headers=_h(email))


def _post(client, pid, cid, action, email, **body):
    return client.post(f"/api/v1/projects/{pid}/changes/{cid}/{action}", json=body, headers=_h(email))


def _ready_for_review(client, pid, cost, schedule=15):
    r = _create(client, pid, email="pm@example.com", impact_cost=cost, impact_schedule=schedule)
    assert r.status_code == 201, r.get_json()
    cid = r.get_json()["id"]
    for name in ("A", "B", "C"):
        assert _post(client, pid, cid, "alternatives", "pm@example.com", name=name).status_code == 201
    r = client.put(f"/api/v1/projects/{pid}/changes/{cid}/impact-analysis",
                   json={"complete": True, "notes": "done"}, headers=_h("pm@example.com"))
    assert r.status_code == 200
    r = _post(client, pid, cid, "submit-review", "pm@example.com")
    assert r.status_code == 200
    return cid


@pytest.fixture()
def pid(project, members):
    return project.id


# ═══════════════════════════════════════════════════════════════════════════
# Collection
# ═══════════════════════════════════════════════════════════════════════════


class TestCollection:

    def test_health(self, client):
        assert client.get("/api/v1/health").get_json()["status"] == "ok"

    def test_create_and_get(self, client, pid):
        r = _create(client, pid)
        assert r.status_code == 201
        data = r.get_json()
        assert data["change_number"] == "CHG-0001"
        assert data["status"] == "readyForReview"
        assert data["required_approver"] == "project_manager"
        assert data["available_transitions"] == ["approved", "rejected", "underReview"]

        r = client.get(f"/api/v1/projects/{pid}/changes/CHG-0001", headers=_h("observer@example.com"))
        assert r.status_code == 200
        assert r.get_json()["id"] == data["id"]

    def test_list_filters_and_paginates(self, client, pid):
        _create(client, pid, title="Printers")
        _create(client, pid, title="Scanners", impact_cost=40_000)
        r = client.get(f"/api/v1/projects/{pid}/changes?status=impactAnalysis", headers=_h("dev@example.com"))
        assert r.get_json()["total"] == 1
        assert r.get_json()["items"][0]["title"] == "Scanners"

        r = client.get(f"/api/v1/projects/{pid}/changes?limit=1", headers=_h("dev@example.com"))
        data = r.get_json()
        assert data["total"] == 2
        assert len(data["items"]) == 1

    def test_metrics(self, client, pid):
        _create(client, pid)
        r = client.get(f"/api/v1/projects/{pid}/changes/metrics", headers=_h("pm@example.com"))
        assert r.status_code == 200
        assert r.get_json()["metrics"]["pending"] == 1

    def test_permissions(self, client, pid):
        r = client.get(f"/api/v1/projects/{pid}/changes/permissions", headers=_h("sponsor@example.com"))
        caps = r.get_json()["capabilities"]
        assert caps["can_approve"] is True
        assert caps["approval_limit"] == {"cost": 100_000, "schedule": 30}

    def test_impact(self, client, pid):
        cid = _create(client, pid).get_json()["id"]
        r = client.get(f"/api/v1/projects/{pid}/changes/{cid}/impact", headers=_h("dev@example.com"))
        assert r.status_code == 200
        assert r.get_json()["recommendation"] == "approve"


# ═══════════════════════════════════════════════════════════════════════════
# Error mapping
# ═══════════════════════════════════════════════════════════════════════════


class TestErrors:

    def test_validation_400(self, client, pid):
        r = _create(client, pid, title="", impact_cost=-5)
        assert r.status_code == 400
        body = r.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert set(body["details"]) == {"title", "impact_cost"}

    def test_forbidden_403(self, client, pid):
        r = _create(client, pid, email="auditor@example.com")
        assert r.status_code == 403
        assert r.get_json()["code"] == "ERR_FORBIDDEN"

    def test_missing_actor_403(self, client, pid):
        r = client.post(f"/api/v1/projects/{pid}/changes", json={"title": "x"})
        assert r.status_code == 403

    def test_anonymous_reads_403(self, client, pid):
        cid = _create(client, pid).get_json()["id"]
        for path in ("changes", f"changes/{cid}", f"changes/{cid}/votes", f"changes/{cid}/impact", "changes/metrics"):
            r = client.get(f"/api/v1/projects/{pid}/{path}")
            assert r.status_code == 403, path
            assert r.get_json()["code"] == "ERR_FORBIDDEN"
        r = client.get(f"/api/v1/projects/{pid}/changes", headers=_h("stranger@example.com"))
        assert r.status_code == 403

    def test_unknown_project_404(self, client, pid):
        r = client.get("/api/v1/projects/999/changes")
        assert r.status_code == 404
        assert r.get_json()["code"] == "ERR_NOT_FOUND"

    def test_unknown_change_404(self, client, pid):
        r = client.get(f"/api/v1/projects/{pid}/changes/CHG-9999", headers=_h("dev@example.com"))
        assert r.status_code == 404

    def test_invalid_transition_409(self, client, pid):
        cid = _create(client, pid).get_json()["id"]
        r = _post(client, pid, cid, "implement", "pm@example.com")
        assert r.status_code == 409
        body = r.get_json()
        assert body["code"] == "GOVERNANCE_INVALID_TRANSITION"
        assert body["details"]["current_status"] == "readyForReview"

    def test_incomplete_analysis_422(self, client, pid):
        cid = _create(client, pid, email="pm@example.com", impact_cost=30_000).get_json()["id"]
        r = _post(client, pid, cid, "submit-review", "pm@example.com")
        assert r.status_code == 422
        assert len(r.get_json()["details"]["missing"]) == 2

    def test_impact_analysis_requires_boolean(self, client, pid):
        cid = _create(client, pid, email="pm@example.com", impact_cost=30_000).get_json()["id"]
        r = client.put(f"/api/v1/projects/{pid}/changes/{cid}/impact-analysis",
                       json={"complete": "yes"}, headers=_h("pm@example.com"))
        assert r.status_code == 400

    def test_approval_limit_403(self, client, pid):
        cid = _create(client, pid, impact_cost=4_000).get_json()["id"]
        r = _post(client, pid, cid, "approve", "quality@example.com")
        assert r.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# Lifecycle over HTTP
# ═══════════════════════════════════════════════════════════════════════════


class TestLifecycle:

    def test_direct_approval_to_implemented(self, client, pid):
        cid = _ready_for_review(client, pid, 20_000)
        r = _post(client, pid, cid, "approve", "sponsor@example.com", comments="Go")
        assert r.status_code == 200
        assert r.get_json()["status"] == "approved"

        r = _post(client, pid, cid, "select-alternative", "pm@example.com", index=2)
        assert r.get_json()["selected_alternative"] == 2
        r = _post(client, pid, cid, "implement", "coordinator@example.com")
        assert r.status_code == 200
        assert r.get_json()["status"] == "implemented"

    def test_select_alternative_out_of_range(self, client, pid):
        cid = _ready_for_review(client, pid, 20_000)
        _post(client, pid, cid, "approve", "sponsor@example.com")
        r = _post(client, pid, cid, "select-alternative", "pm@example.com", index=7)
        assert r.status_code == 400

    def test_reject(self, client, pid):
        cid = _create(client, pid).get_json()["id"]
        r = _post(client, pid, cid, "reject", "pm@example.com", comments="Not needed")
        assert r.get_json()["status"] == "rejected"
        assert r.get_json()["available_transitions"] == []


class TestCommitteeEndpoints:

    BALLOT = [
        ("pm@example.com", "pm", "approve"),
        ("tech@example.com", "tech", "abstain"),
        ("finance@example.com", "finance", "abstain"),
        ("quality@example.com", "quality", "abstain"),
        ("sponsor@example.com", "sponsor", "approve"),
    ]

    def _escalated(self, client, pid):
        cid = _ready_for_review(client, pid, 60_000, schedule=30)
        r = _post(client, pid, cid, "approve", "owner@example.com")
        assert r.status_code == 409
        r = _post(client, pid, cid, "escalate", "pm@example.com")
        assert r.status_code == 200
        assert r.get_json()["status"] == "underReview"
        return cid

    def test_vote_until_decided(self, client, pid):
        cid = self._escalated(client, pid)
        for email, seat, vote in self.BALLOT:
            r = _post(client, pid, cid, "votes", email, seat_id=seat, vote=vote)
            assert r.status_code == 200, r.get_json()
        data = r.get_json()
        assert data["tally"]["approve_pct"] == 40.0
        assert data["tally"]["result"] == "rejected"
        assert data["change"]["status"] == "rejected"

        r = client.get(f"/api/v1/projects/{pid}/changes/{cid}/votes", headers=_h("tech@example.com"))
        assert r.get_json()["tally"]["voted_count"] == 5

    def test_wrong_seat_403(self, client, pid):
        cid = self._escalated(client, pid)
        r = _post(client, pid, cid, "votes", "exec@example.com", seat_id="sponsor", vote="approve")
        assert r.status_code == 403
        assert r.get_json()["code"] == "GOVERNANCE_INVALID_VOTER"

    def test_missing_seat_400(self, client, pid):
        cid = self._escalated(client, pid)
        r = _post(client, pid, cid, "votes", "pm@example.com", vote="approve")
        assert r.status_code == 400


class TestNotifications:

    def test_list_and_mark_read(self, client, pid):
        _create(client, pid)
        r = client.get(f"/api/v1/projects/{pid}/notifications?recipient=role:project_manager",
                       headers=_h("pm@example.com"))
        data = r.get_json()
        assert data["total"] == 1
        nid = data["items"][0]["id"]

        r = client.post(f"/api/v1/projects/{pid}/notifications/{nid}/read", headers=_h("pm@example.com"))
        assert r.status_code == 200
        assert r.get_json()["is_read"] is True

        r = client.get(f"/api/v1/projects/{pid}/notifications?recipient=role:project_manager&unread_only=true",
                       headers=_h("pm@example.com"))
        assert r.get_json()["total"] == 0

    def test_defaults_to_caller(self, client, pid):
        cid = _create(client, pid).get_json()["id"]
        _post(client, pid, cid, "approve", "pm@example.com")
        r = client.get(f"/api/v1/projects/{pid}/notifications", headers=_h("dev@example.com"))
        assert [n["event_kind"] for n in r.get_json()["items"]] == ["status_changed"]

    def test_mark_read_unknown_404(self, client, pid):
        r = client.post(f"/api/v1/projects/{pid}/notifications/12345/read", headers=_h("pm@example.com"))
        assert r.status_code == 404

    def test_foreign_recipient_403(self, client, pid):
        _create(client, pid)
        r = client.get(f"/api/v1/projects/{pid}/notifications?recipient=role:project_manager",
                       headers=_h("dev@example.com"))
        assert r.status_code == 403
        r = client.get(f"/api/v1/projects/{pid}/notifications?recipient=role:project_manager")
        assert r.status_code == 403

    def test_mark_read_foreign_notification(self, client, pid):
        _create(client, pid)
        r = client.get(f"/api/v1/projects/{pid}/notifications?recipient=role:project_manager",
                       headers=_h("pm@example.com"))
        nid = r.get_json()["items"][0]["id"]

        assert client.post(f"/api/v1/projects/{pid}/notifications/{nid}/read").status_code == 403
        r = client.post(f"/api/v1/projects/{pid}/notifications/{nid}/read", headers=_h("dev@example.com"))
        assert r.status_code == 404

        r = client.get(f"/api/v1/projects/{pid}/notifications?recipient=role:project_manager&unread_only=true",
                       headers=_h("pm@example.com"))
        assert r.get_json()["total"] == 1
