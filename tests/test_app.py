from clinicdesk import __version__


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": __version__, "jobsInFlight": 0}


def test_trace_id_is_propagated(client):
    resp = client.get("/health", headers={"X-Trace-Id": "trace-123"})
    assert resp.headers["X-Trace-Id"] == "trace-123"

    generated = client.get("/health").headers["X-Trace-Id"]
    assert len(generated) == 32


def test_metrics_use_route_templates(client, patient_id):
    client.get(f"/api/patients/{patient_id}")

    resp = client.get("/metrics")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert 'route="/api/patients/{patient_id}"' in resp.text
    assert patient_id not in resp.text


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/nothing-here")

    assert resp.status_code == 404
    assert resp.json()["success"] is False
    assert resp.json()["error"]["code"] == 404


def test_dashboard_stats(client, patient_id, wait_for_status):
    client.post("/api/consultations", json={"patientId": patient_id})
    exam = client.post(
        "/api/exams/upload",
        data={"patientId": patient_id},
        files={"file": ("a.pdf", b"%PDF-1.4", "application/pdf")},
    ).json()
    wait_for_status(client, f"/api/exams/{exam['id']}")

    stats = client.get("/api/dashboard/stats").json()

    assert stats == {
        "totalPatients": 1,
        "consultationsThisMonth": 1,
        "reportsGenerated": 0,
        "examsAnalyzed": 1,
    }
