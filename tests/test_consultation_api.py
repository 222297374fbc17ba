from pathlib import Path

import pytest


AUDIO_BYTES = b"RIFF\x00\x00\x00\x00WAVEfmt fake-audio"


@pytest.fixture
def consultation_id(client, patient_id):
    resp = client.post(
        "/api/consultations",
        json={"patientId": patient_id, "chiefComplaint": "Cansaço <b>constante</b>"},
    )
    assert resp.status_code == 201
    return resp.json()["id"]


def _upload_audio(client, consultation_id, *, content_type="audio/webm", data=AUDIO_BYTES):
    return client.post(
        f"/api/consultations/{consultation_id}/upload-audio",
        files={"audio": ("consulta.webm", data, content_type)},
    )


def test_create_consultation_uses_default_user(client, patient_id):
    resp = client.post("/api/consultations", json={"patientId": patient_id, "symptoms": "Fadiga"})

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "IN_PROGRESS"
    assert body["patient"]["fullName"] == "Ana Paula Costa Silva"
    assert body["conductedBy"]

    again = client.post("/api/consultations", json={"patientId": patient_id})
    assert again.json()["conductedBy"] == body["conductedBy"]


def test_create_consultation_strips_markup(client, consultation_id):
    body = client.get(f"/api/consultations/{consultation_id}").json()
    assert body["chiefComplaint"] == "Cansaço constante"


def test_create_consultation_validation(client, patient_id):
    assert client.post("/api/consultations", json={}).status_code == 400
    assert client.post("/api/consultations", json={"patientId": "nope"}).status_code == 404
    resp = client.post("/api/consultations", json={"patientId": patient_id, "conductedBy": "ghost"})
    assert resp.status_code == 404


def test_audio_upload_transcribes_in_background(client, consultation_id, openai_client, wait_for_status):
    resp = _upload_audio(client, consultation_id)

    assert resp.status_code == 201
    audio = resp.json()
    assert audio["transcriptionStatus"] == "PROCESSING"
    assert audio["fileSize"] == len(AUDIO_BYTES)

    done = wait_for_status(
        client,
        f"/api/consultations/{consultation_id}/audios/{audio['id']}",
        field="transcriptionStatus",
    )
    assert done["transcriptionStatus"] == "COMPLETED"
    assert done["transcription"] == "Paciente relata cansaço há seis meses."
    assert done["duration"] == 13
    assert done["segments"] == [{"id": None, "start": 0.0, "end": 2.5, "text": "Paciente relata cansaço"}]
    assert done["transcriptionError"] is None

    [call] = openai_client.transcriptions.calls
    assert call["model"] == "whisper-1"
    assert call["language"] == "pt"
    assert call["response_format"] == "verbose_json"

    consultation = client.get(f"/api/consultations/{consultation_id}").json()
    assert [item["id"] for item in consultation["audios"]] == [audio["id"]]


def test_audio_upload_rejects_non_audio(client, consultation_id):
    resp = _upload_audio(client, consultation_id, content_type="application/pdf")
    assert resp.status_code == 400
    assert _upload_audio(client, "missing").status_code == 404


def test_failed_transcription_can_be_retried(client, consultation_id, openai_client, wait_for_status):
    openai_client.transcriptions.error = RuntimeError("rate limited")
    audio_id = _upload_audio(client, consultation_id).json()["id"]
    url = f"/api/consultations/{consultation_id}/audios/{audio_id}"

    failed = wait_for_status(client, url, field="transcriptionStatus")
    assert failed["transcriptionStatus"] == "FAILED"
    assert failed["transcriptionError"] == "Audio transcription failed: rate limited"
    assert failed["transcription"] is None

    openai_client.transcriptions.error = None
    resp = client.post(f"{url}/retranscribe")
    assert resp.status_code == 202
    assert resp.json()["status"] == "PROCESSING"

    done = wait_for_status(client, url, field="transcriptionStatus")
    assert done["transcriptionStatus"] == "COMPLETED"
    assert done["transcriptionError"] is None


def test_delete_consultation_removes_audio_files(client, consultation_id, wait_for_status):
    audio = _upload_audio(client, consultation_id).json()
    wait_for_status(
        client,
        f"/api/consultations/{consultation_id}/audios/{audio['id']}",
        field="transcriptionStatus",
    )
    assert Path(audio["fileUrl"]).exists()

    resp = client.delete(f"/api/consultations/{consultation_id}")

    assert resp.status_code == 200
    assert resp.json()["filesRemoved"] == 1
    assert not Path(audio["fileUrl"]).exists()
    assert client.get(f"/api/consultations/{consultation_id}").status_code == 404
    assert client.get(f"/api/consultations/{consultation_id}/audios/{audio['id']}").status_code == 404


def test_update_and_list_consultations(client, patient_id, consultation_id):
    resp = client.put(f"/api/consultations/{consultation_id}", json={"status": "COMPLETED"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "COMPLETED"

    assert client.put(f"/api/consultations/{consultation_id}", json={"status": "DONE"}).status_code == 400

    listed = client.get(f"/api/consultations/patient/{patient_id}").json()
    assert [item["id"] for item in listed] == [consultation_id]
    assert len(client.get("/api/consultations").json()) == 1
