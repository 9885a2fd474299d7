CONFIRMATION = {
    "id": "m1",
    "sender": "jobs@acme.com",
    "subject": "Thank you for applying to Acme for Software Engineer",
    "snippet": "We have received your application.",
    "received_at": "2025-04-01T15:00:00Z",
}


def _post_confirmation(client, user_id=1):
    res = client.post(f"/api/users/{user_id}/messages", json=CONFIRMATION)
    assert res.status_code == 200
    return res.json()


def test_health(client):
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_process_message_creates_application(client):
    data = _post_confirmation(client)
    assert data["classification"]["event_type"] == "confirmation"
    assert data["identity"]["company_name"] == "Acme"
    assert data["match_result"]["action"] == "created"
    assert data["event"]["internal_date"] == "2025-04-01T15:00:00"

    listing = client.get("/api/users/1/applications").json()
    assert len(listing["items"]) == 1
    item = listing["items"][0]
    assert item["company_name"] == "Acme"
    assert item["current_status"] == "APPLIED"

    detail = client.get(f"/api/applications/{item['id']}").json()
    assert [e["message_id"] for e in detail["events"]] == ["m1"]


def test_applications_are_listed_per_user(client):
    _post_confirmation(client, user_id=1)
    assert client.get("/api/users/2/applications").json()["items"] == []


def test_batch_processes_every_message(client):
    second = dict(CONFIRMATION, id="m2", subject="Schedule an interview", snippet="Pick a time for the Software Engineer role.")
    res = client.post("/api/users/1/messages/batch", json={"messages": [CONFIRMATION, second]})
    assert res.status_code == 200
    data = res.json()
    assert data["received"] == 2
    assert data["processed"] == 2


def test_enqueue_rejects_empty_batch(client):
    res = client.post("/api/users/1/messages/enqueue", json={"messages": []})
    assert res.status_code == 400


def test_classify_preview_stores_nothing(client):
    res = client.post("/api/classify", json={"subject": CONFIRMATION["subject"], "sender": CONFIRMATION["sender"]})
    assert res.status_code == 200
    data = res.json()
    assert data["classification"]["is_job_related"] is True
    assert data["identity"]["company_name"] == "Acme"
    assert client.get("/api/users/1/applications").json()["items"] == []


def test_classify_preview_skips_identity_for_unrelated_mail(client):
    res = client.post("/api/classify", json={"subject": "Lunch on Friday?", "sender": "friend@gmail.com"})
    data = res.json()
    assert data["classification"]["is_job_related"] is False
    assert data["identity"] is None


def test_unassigned_events_carry_reason(client):
    res = client.post(
        "/api/users/1/messages",
        json={"id": "u1", "sender": "no-reply@myworkday.com", "subject": "Application update"},
    )
    assert res.json()["match_result"]["action"] == "unassigned"

    events = client.get("/api/users/1/events/unassigned").json()
    assert len(events) == 1
    assert events[0]["message_id"] == "u1"
    assert events[0]["reason_code"] == "missing_identity"
    assert events[0]["reason_detail"] == "Missing company (platform sender, body unavailable)."


def test_override_and_clear(client):
    app_id = _post_confirmation(client)["match_result"]["application_id"]

    res = client.post(f"/api/applications/{app_id}/override", json={"status": "REJECTED", "explanation": "Phone call"})
    assert res.status_code == 200
    application = res.json()["application"]
    assert application["current_status"] == "REJECTED"
    assert application["status_source"] == "user"
    assert application["user_override"] is True

    res = client.delete(f"/api/applications/{app_id}/override")
    assert res.status_code == 200
    data = res.json()
    assert data["application"]["user_override"] is False
    assert data["inference"]["status"] == "ok"

    assert client.delete(f"/api/applications/{app_id}/override").status_code == 400


def test_override_unknown_application_is_404(client):
    res = client.post("/api/applications/999/override", json={"status": "REJECTED"})
    assert res.status_code == 404


def test_override_rejects_unknown_status(client):
    app_id = _post_confirmation(client)["match_result"]["application_id"]
    res = client.post(f"/api/applications/{app_id}/override", json={"status": "HIRED"})
    assert res.status_code == 422


def test_reinfer_endpoint(client):
    app_id = _post_confirmation(client)["match_result"]["application_id"]
    res = client.post(f"/api/applications/{app_id}/reinfer")
    assert res.status_code == 200
    assert res.json()["inferred_status"] == "APPLIED"


def test_merge_validation(client):
    app_id = _post_confirmation(client)["match_result"]["application_id"]
    res = client.post("/api/users/1/applications/merge", json={"source_id": app_id, "target_id": app_id})
    assert res.status_code == 400
    res = client.post("/api/users/1/applications/merge", json={"source_id": 999, "target_id": app_id})
    assert res.status_code == 404
    # Another user's application is invisible.
    res = client.post("/api/users/2/applications/merge", json={"source_id": app_id, "target_id": app_id + 1})
    assert res.status_code == 404


def test_requisition_id_is_exposed(client):
    message = dict(CONFIRMATION, snippet="We have received your application. Job ID 4521")
    data = client.post("/api/users/1/messages", json=message).json()
    assert data["identity"]["external_req_id"] == "4521"
    assert data["event"]["external_req_id"] == "4521"

    item = client.get("/api/users/1/applications").json()["items"][0]
    assert item["external_req_id"] == "4521"
