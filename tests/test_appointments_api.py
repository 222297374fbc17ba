from types import SimpleNamespace

import pytest

from clinicdesk.calendar_sync import CalDAVClient


class FakeCalDAVHttp:
    def __init__(self, status_code: int = 201) -> None:
        self.status_code = status_code
        self.requests = []

    def _respond(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        return SimpleNamespace(
            ok=self.status_code < 400, status_code=self.status_code, reason="Fake", text=""
        )

    def put(self, url, **kwargs):
        return self._respond("PUT", url, **kwargs)

    def delete(self, url, **kwargs):
        return self._respond("DELETE", url, **kwargs)


@pytest.fixture
def appointment(client, patient_id):
    resp = client.post(
        "/api/appointments",
        json={
            "patientId": patient_id,
            "title": "Retorno, análise",
            "startTime": "2025-01-15T10:00:00Z",
            "endTime": "2025-01-15T10:45:00Z",
            "type": "follow-up",
            "location": "Sala 2",
        },
    )
    assert resp.status_code == 201
    return resp.json()


@pytest.fixture
def caldav_http(services):
    http = FakeCalDAVHttp()
    services.calendar.caldav = CalDAVClient("https://caldav.example.com/cal/", "user", "secret", http=http)
    return http


def test_create_appointment_computes_duration(appointment):
    assert appointment["duration"] == 45
    assert appointment["type"] == "FOLLOW_UP"
    assert appointment["status"] == "SCHEDULED"
    assert appointment["patient"]["fullName"] == "Ana Paula Costa Silva"
    assert appointment["userId"]


def test_create_appointment_validation(client, patient_id):
    base = {"patientId": patient_id, "title": "Consulta", "startTime": "2025-01-15T10:00:00Z"}

    missing_end = client.post("/api/appointments", json=base)
    assert missing_end.status_code == 400
    assert missing_end.json()["error"]["details"] == {"field": "endTime"}

    backwards = client.post("/api/appointments", json={**base, "endTime": "2025-01-15T09:00:00Z"})
    assert backwards.status_code == 400
    assert backwards.json()["error"]["message"] == "endTime must be after startTime"

    bad_type = client.post(
        "/api/appointments", json={**base, "endTime": "2025-01-15T11:00:00Z", "type": "surgery"}
    )
    assert bad_type.status_code == 400

    unknown_patient = client.post(
        "/api/appointments", json={**base, "patientId": "nope", "endTime": "2025-01-15T11:00:00Z"}
    )
    assert unknown_patient.status_code == 404
    assert client.get("/api/appointments").json() == []


def test_list_appointments_filters(client, patient_id, appointment):
    client.post(
        "/api/appointments",
        json={
            "patientId": patient_id,
            "title": "Exame",
            "startTime": "2025-02-01T14:00:00Z",
            "endTime": "2025-02-01T14:30:00Z",
            "status": "confirmed",
        },
    )

    everything = client.get("/api/appointments").json()
    assert [item["title"] for item in everything] == ["Retorno, análise", "Exame"]

    january = client.get(
        "/api/appointments", params={"startDate": "2025-01-01T00:00:00Z", "endDate": "2025-01-31T23:59:59Z"}
    ).json()
    assert [item["id"] for item in january] == [appointment["id"]]

    confirmed = client.get("/api/appointments", params={"status": "CONFIRMED"}).json()
    assert [item["title"] for item in confirmed] == ["Exame"]

    assert client.get("/api/appointments", params={"patientId": "other"}).json() == []
    assert client.get("/api/appointments", params={"startDate": "yesterday"}).status_code == 400


def test_update_appointment_recomputes_duration(client, appointment):
    resp = client.put(
        f"/api/appointments/{appointment['id']}",
        json={"endTime": "2025-01-15T11:30:00Z", "notes": "Trazer exames"},
    )

    assert resp.status_code == 200
    assert resp.json()["duration"] == 90
    assert resp.json()["notes"] == "Trazer exames"

    backwards = client.put(
        f"/api/appointments/{appointment['id']}", json={"startTime": "2025-01-15T12:00:00Z"}
    )
    assert backwards.status_code == 400
    assert client.get(f"/api/appointments/{appointment['id']}").json()["duration"] == 90


def test_cancel_appointment(client, appointment):
    resp = client.post(f"/api/appointments/{appointment['id']}/cancel", json={"reason": "Paciente viajou"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "CANCELLED"
    assert body["cancellationReason"] == "Paciente viajou"
    assert body["calendarSyncError"] is None


def test_download_ics(client, appointment):
    resp = client.get(f"/api/appointments/{appointment['id']}/ics")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/calendar")
    assert f'filename="appointment-{appointment["id"]}.ics"' in resp.headers["content-disposition"]
    text = resp.text.replace("\r\n ", "")
    assert text.startswith("BEGIN:VCALENDAR\r\n")
    assert f"UID:appointment-{appointment['id']}@test.clinicdesk\r\n" in text
    assert "DTSTART:20250115T100000Z\r\n" in text
    assert "SUMMARY:Retorno\\, análise\r\n" in text
    assert "ORGANIZER;CN=\"ClinicDesk\":mailto:clinic@example.com" in text
    assert "mailto:anapaula@example.com" in text


def test_sync_without_providers_is_rejected(client, appointment):
    resp = client.post(f"/api/appointments/{appointment['id']}/sync")

    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "No calendar provider is configured"


def test_sync_to_caldav_records_uid(client, appointment, caldav_http):
    resp = client.post(f"/api/appointments/{appointment['id']}/sync")

    assert resp.status_code == 200
    body = resp.json()
    assert body["synced"] == ["caldav"]
    assert body["errors"] == {}
    uid = f"appointment-{appointment['id']}@test.clinicdesk"
    assert body["appointment"]["calendarUid"] == uid
    assert body["appointment"]["calendarSyncedAt"] is not None

    [(method, url, kwargs)] = caldav_http.requests
    assert method == "PUT"
    assert url == f"https://caldav.example.com/cal/{uid}.ics"
    assert kwargs["auth"] == ("user", "secret")
    assert b"STATUS:CONFIRMED" in kwargs["data"]

    cancelled = client.post(f"/api/appointments/{appointment['id']}/cancel")
    assert cancelled.status_code == 200
    assert b"STATUS:CANCELLED" in caldav_http.requests[-1][2]["data"]

    assert client.delete(f"/api/appointments/{appointment['id']}").status_code == 200
    assert caldav_http.requests[-1][0] == "DELETE"
    assert client.get(f"/api/appointments/{appointment['id']}").status_code == 404


def test_sync_failure_is_recorded(client, appointment, caldav_http):
    caldav_http.status_code = 503

    resp = client.post(f"/api/appointments/{appointment['id']}/sync")

    assert resp.status_code == 502
    assert resp.json()["error"]["details"] == {"caldav": "CalDAV error: 503 Fake"}
    stored = client.get(f"/api/appointments/{appointment['id']}").json()
    assert stored["calendarSyncError"] == "caldav: CalDAV error: 503 Fake"
    assert stored["calendarSyncedAt"] is None
