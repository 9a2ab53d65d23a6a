import base64
from datetime import datetime, timedelta, timezone

import anyio

from certguard.domain.compliance.db_models import CompanyDocumentCategory
from certguard.domain.outbox.service import OutboxAdapters, enqueue_outbox_event, process_outbox
from certguard.infra.email import NoopEmailAdapter
from certguard.settings import settings


def _proof(content: bytes = b"%PDF-1.4 card", file_name: str = "card.pdf") -> dict:
    return {
        "file_name": file_name,
        "mime_type": "application/pdf",
        "object_key": f"uploads/{file_name}",
        "content_base64": base64.b64encode(content).decode("ascii"),
    }


def _certification(*, name: str = "Track Safety", expires_in_days: int = 365, proofs: int = 1) -> dict:
    today = datetime.now(timezone.utc)
    return {
        "custom_name": name,
        "required": True,
        "issue_date": (today - timedelta(days=400)).isoformat(),
        "expires_at": (today + timedelta(days=expires_in_days)).isoformat(),
        "proofs": [_proof(f"{name}-{index}".encode()) for index in range(proofs)],
    }


def _worker(employee_code: str = "E-100", email: str = "dana.reyes@example.com") -> dict:
    return {
        "employee_code": employee_code,
        "first_name": "Dana",
        "last_name": "Reyes",
        "title": "Track Foreman",
        "role": "Foreman",
        "email": email,
    }


def _onboard(client, headers: dict, **certification) -> str:
    response = client.post("/v1/compliance/workers", json=_worker(), headers=headers)
    assert response.status_code == 201
    worker_id = response.json()["worker_id"]
    response = client.post(
        f"/v1/compliance/workers/{worker_id}/certifications",
        json=_certification(**certification),
        headers=headers,
    )
    assert response.status_code == 201
    return worker_id


def test_requests_without_identity_are_unauthorized(client):
    response = client.get("/v1/compliance/workers")
    assert response.status_code == 401
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["detail"] == "Missing actor identity"


def test_identity_headers_from_untrusted_source_are_rejected(client, seed, monkeypatch):
    company_id = anyio.run(seed.company)
    headers = seed.headers(company_id, role="owner")
    assert client.get("/v1/compliance/workers", headers=headers).status_code == 200

    monkeypatch.setattr(settings, "trusted_proxy_ips", ["10.0.0.5"])
    spoofed = client.get("/v1/compliance/workers", headers=headers)
    assert spoofed.status_code == 401
    assert spoofed.json()["detail"] == "Untrusted identity source"

    monkeypatch.setattr(settings, "trusted_proxy_ips", ["testclient"])
    monkeypatch.setattr(settings, "trust_proxy_headers", False)
    assert client.get("/v1/compliance/workers", headers=headers).status_code == 401


def test_roles_are_enforced_per_surface(client, seed):
    company_id = anyio.run(seed.company)

    viewer = client.get("/v1/compliance/workers", headers=seed.headers(company_id, role="viewer"))
    assert viewer.status_code == 403
    assert viewer.json()["title"] == "Forbidden"

    dispatcher = seed.headers(company_id, role="dispatch", actor_id="dispatcher-1")
    assert client.get("/v1/compliance/workers", headers=dispatcher).status_code == 403

    unknown = client.get("/v1/compliance/workers", headers=seed.headers(company_id, role="janitor"))
    assert unknown.status_code == 403

    created = client.post("/v1/dispatch/work-orders", json={"title": "Ballast cleanup"}, headers=dispatcher)
    assert created.status_code == 201
    assert created.json()["status"] == "SCHEDULED"


def test_onboarding_to_public_verification(client, seed):
    settings.public_base_url = "https://verify.example.com/"
    company_id = anyio.run(seed.company)
    headers = seed.headers(company_id)

    worker_id = _onboard(client, headers)
    for category in CompanyDocumentCategory:
        response = client.post(
            "/v1/compliance/company-documents",
            json={
                "category": category.value,
                "title": f"{category.value.title()} binder",
                "file": _proof(category.value.encode(), f"{category.value.lower()}.pdf"),
            },
            headers=headers,
        )
        assert response.status_code == 201

    response = client.post(f"/v1/compliance/workers/{worker_id}/snapshots", headers=headers)
    assert response.status_code == 201
    created = response.json()
    assert created["snapshot"]["status"] == "PASS"
    assert created["snapshot"]["payload"]["failure_reasons"] == []
    assert created["verification_url"] == f"https://verify.example.com/verify/{created['token']}"

    public = client.get(f"/v1/public/verify/{created['token']}")
    assert public.status_code == 200
    body = public.json()
    assert body["status"] == "PASS"
    assert body["snapshot_hash"] == created["snapshot"]["snapshot_hash"]
    assert body["integrity_verified"] is True

    worker = client.get(f"/v1/compliance/workers/{worker_id}", headers=headers).json()
    assert worker["compliance_hash"] == created["snapshot"]["snapshot_hash"]

    history = client.get(f"/v1/compliance/workers/{worker_id}/snapshots", headers=headers).json()
    assert [item["snapshot_id"] for item in history] == [created["snapshot"]["snapshot_id"]]

    activities = client.get(
        "/v1/compliance/activities",
        params={"type": "SNAPSHOT_CREATED", "worker_id": worker_id},
        headers=headers,
    ).json()
    assert len(activities) == 1
    assert activities[0]["metadata"]["hash"] == created["snapshot"]["snapshot_hash"]


def test_certifications_cannot_be_edited(client, seed):
    company_id = anyio.run(seed.company)
    headers = seed.headers(company_id)
    worker_id = _onboard(client, headers)
    certifications = client.post(f"/v1/compliance/workers/{worker_id}/refresh", headers=headers).json()
    certification_id = certifications["certifications"][0]["certification_id"]

    response = client.patch(
        f"/v1/compliance/workers/{worker_id}/certifications/{certification_id}", headers=headers
    )
    assert response.status_code == 409
    assert response.json()["title"] == "Immutable Record"


def test_dispatch_gate_over_http(client, seed):
    company_id = anyio.run(seed.company)
    owner = seed.headers(company_id)
    dispatcher = seed.headers(company_id, role="dispatch", actor_id="dispatcher-1")
    worker_id = _onboard(client, owner, name="Confined Space", expires_in_days=-3, proofs=0)
    work_order_id = client.post(
        "/v1/dispatch/work-orders", json={"title": "Culvert inspection"}, headers=dispatcher
    ).json()["work_order_id"]
    assign_url = f"/v1/dispatch/work-orders/{work_order_id}/assignments"

    summary = client.get(f"/v1/dispatch/workers/{worker_id}/compliance", headers=dispatcher).json()
    assert summary["needs_override"] is True
    assert summary["missing"][0]["reason"] == "expired"

    blocked = client.post(assign_url, json={"worker_id": worker_id}, headers=dispatcher)
    assert blocked.status_code == 409
    assert blocked.headers["content-type"].startswith("application/problem+json")
    problem = blocked.json()
    assert problem["title"] == "Compliance Blocked"
    assert problem["compliance_summary"]["status"] == "FAIL"
    assert [gap["label"] for gap in problem["errors"]] == ["Confined Space"]

    short = client.post(
        assign_url,
        json={"worker_id": worker_id, "force_override": True, "override_reason": "ok"},
        headers=dispatcher,
    )
    assert short.status_code == 422
    assert short.json()["min_length"] == 10

    reason = "Card renewal confirmed by phone with the training provider"
    forced = client.post(
        assign_url,
        json={"worker_id": worker_id, "force_override": True, "override_reason": reason},
        headers=dispatcher,
    )
    assert forced.status_code == 201
    assignment = forced.json()
    assert assignment["override_acknowledged"] is True
    assert assignment["override_reason"] == reason
    assert assignment["override_actor_id"] == "dispatcher-1"

    removed = client.post(
        f"/v1/dispatch/assignments/{assignment['assignment_id']}/unassign", headers=dispatcher
    )
    assert removed.status_code == 200
    assert removed.json()["unassigned_at"] is not None


def test_export_csv_download(client, seed):
    company_id = anyio.run(seed.company)
    headers = seed.headers(company_id)
    _onboard(client, headers)

    response = client.get("/v1/compliance/export", params={"format": "csv"}, headers=headers)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == 'attachment; filename="compliance-export.csv"'
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("employee_code,first_name,last_name,certification_name")
    assert lines[1].startswith("E-100,Dana,Reyes,Track Safety")


def test_validation_errors_are_problem_details(client, seed):
    company_id = anyio.run(seed.company)
    response = client.post(
        "/v1/compliance/workers",
        json={**_worker(), "email": "not-an-email"},
        headers=seed.headers(company_id),
    )
    assert response.status_code == 422
    body = response.json()
    assert body["title"] == "Validation Error"
    assert [error["field"] for error in body["errors"]] == ["email"]


def test_dead_letter_admin_routes(client, seed, async_session_maker):
    company_id = anyio.run(seed.company)
    headers = seed.headers(company_id)

    assert client.get("/v1/admin/outbox/dead-letter", headers=headers).json() == []
    missing = client.post("/v1/admin/outbox/unknown/replay", headers=headers)
    assert missing.status_code == 404

    async def _dead_event() -> str:
        async with async_session_maker() as session:
            async with session.begin():
                event = await enqueue_outbox_event(
                    session,
                    company_id=company_id,
                    kind="email",
                    payload={
                        "recipient": None,
                        "subject": "New assignment",
                        "body": "Report to North Yard",
                        "context": {"work_order_id": "wo-1", "assignment_id": "asg-1"},
                    },
                    dedupe_key="assignment:asg-1",
                )
        async with async_session_maker() as session:
            await process_outbox(session, OutboxAdapters(email_adapter=NoopEmailAdapter()))
        return event.event_id

    event_id = anyio.run(_dead_event)
    dead = client.get("/v1/admin/outbox/dead-letter", headers=headers).json()
    assert [entry["event_id"] for entry in dead] == [event_id]
    assert dead[0]["last_error"] == "missing_recipient"
    assert dead[0]["work_order_id"] == "wo-1"
    assert dead[0]["assignment_id"] == "asg-1"
    assert "payload_json" not in dead[0]

    replayed = client.post(f"/v1/admin/outbox/{event_id}/replay", headers=headers)
    assert replayed.status_code == 202
    assert replayed.json()["status"] == "pending"
    assert replayed.json()["attempts"] == 0


def test_health_and_readiness(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.json()["checks"]["database"]["ok"] is True
    assert ready.headers["X-Content-Type-Options"] == "nosniff"
    assert ready.headers["X-Request-ID"]


def test_metrics_endpoint_requires_token_when_configured(client):
    settings.metrics_token = "scrape-secret"
    client.get("/healthz")

    assert client.get("/metrics").status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer wrong"}).status_code == 401

    response = client.get("/metrics", headers={"Authorization": "Bearer scrape-secret"})
    assert response.status_code == 200
    assert "http_request_latency_seconds" in response.text
    assert client.get("/metrics", params={"token": "scrape-secret"}).status_code == 200
