from pathlib import Path

from clinicdesk.db.models import Exam
from clinicdesk.db.session import session_scope


PDF_BYTES = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF"


def _upload(client, patient_id, *, name="hemograma.pdf", content_type="application/pdf", data=PDF_BYTES):
    return client.post(
        "/api/exams/upload",
        data={"patientId": patient_id} if patient_id else {},
        files={"file": (name, data, content_type)},
    )


def test_upload_returns_processing_then_completes(client, patient_id, anthropic_client, wait_for_status):
    resp = _upload(client, patient_id)

    assert resp.status_code == 201
    body = resp.json()
    assert body["processingStatus"] == "PROCESSING"
    assert body["fileType"] == "pdf"
    assert Path(body["fileUrl"]).read_bytes() == PDF_BYTES

    exam = wait_for_status(client, f"/api/exams/{body['id']}")
    assert exam["processingStatus"] == "COMPLETED"
    assert exam["category"] == "Hemograma"
    assert exam["aiSummary"] == "Anemia leve"
    assert exam["examDate"] == "2024-03-10"
    assert exam["aiModel"] == "claude-test"
    assert exam["processingError"] is None
    [abnormal] = exam["abnormalValues"]
    assert abnormal["parameter"] == "Hemoglobina"
    assert abnormal["status"] == "LOW"

    [call] = anthropic_client.messages.calls
    document = call["messages"][0]["content"][0]
    assert document["type"] == "document"
    assert document["source"]["media_type"] == "application/pdf"


def test_image_upload_sends_image_block(client, patient_id, anthropic_client, wait_for_status):
    resp = _upload(client, patient_id, name="scan.png", content_type="image/png", data=b"\x89PNG fake")
    assert resp.status_code == 201
    assert resp.json()["fileType"] == "image"

    wait_for_status(client, f"/api/exams/{resp.json()['id']}")
    block = anthropic_client.messages.calls[0]["messages"][0]["content"][0]
    assert block["type"] == "image"
    assert block["source"]["media_type"] == "image/png"


def test_upload_validation_errors_create_nothing(client, patient_id, session_factory):
    missing_patient = _upload(client, None)
    assert missing_patient.status_code == 400
    assert missing_patient.json()["success"] is False
    assert missing_patient.json()["error"]["code"] == "VALIDATION_ERROR"

    bad_type = _upload(client, patient_id, name="notes.txt", content_type="text/plain", data=b"hello")
    assert bad_type.status_code == 400

    no_file = client.post("/api/exams/upload", data={"patientId": patient_id})
    assert no_file.status_code == 400

    unknown_patient = _upload(client, "does-not-exist")
    assert unknown_patient.status_code == 404
    assert unknown_patient.json()["error"]["code"] == "NOT_FOUND"

    with session_scope(session_factory) as session:
        assert session.query(Exam).count() == 0


def test_collaborator_failure_marks_exam_failed(client, patient_id, anthropic_client, wait_for_status):
    anthropic_client.messages.error = RuntimeError("Your credit balance is too low")

    resp = _upload(client, patient_id)
    exam = wait_for_status(client, f"/api/exams/{resp.json()['id']}")

    assert exam["processingStatus"] == "FAILED"
    assert "insufficient Anthropic credits" in exam["processingError"]
    assert exam["category"] is None
    assert exam["aiSummary"] is None


def test_reprocess_failed_exam_clears_error(client, patient_id, anthropic_client, wait_for_status):
    anthropic_client.messages.error = RuntimeError("upstream unavailable")
    exam_id = _upload(client, patient_id).json()["id"]
    assert wait_for_status(client, f"/api/exams/{exam_id}")["processingStatus"] == "FAILED"

    anthropic_client.messages.error = None
    resp = client.post(f"/api/exams/{exam_id}/reprocess")
    assert resp.status_code == 202
    assert resp.json() == {
        "id": exam_id,
        "kind": "exam_analysis",
        "status": "PROCESSING",
        "message": "Exam reprocessing started",
    }

    exam = wait_for_status(client, f"/api/exams/{exam_id}")
    assert exam["processingStatus"] == "COMPLETED"
    assert exam["processingError"] is None
    assert len(anthropic_client.messages.calls) == 2


def test_reprocess_unknown_exam_is_404(client):
    resp = client.post("/api/exams/missing/reprocess")
    assert resp.status_code == 404


def test_unstructured_reply_is_completed_with_fallback(client, patient_id, anthropic_client, wait_for_status):
    anthropic_client.messages.exam_reply = "The image is too blurry to read."

    exam_id = _upload(client, patient_id).json()["id"]
    exam = wait_for_status(client, f"/api/exams/{exam_id}")

    assert exam["processingStatus"] == "COMPLETED"
    assert exam["category"] == "Other"
    assert exam["confidence"] == 0.5
    assert exam["aiSummary"] == "The image is too blurry to read."


def test_job_status_endpoint(client, patient_id, wait_for_status):
    exam_id = _upload(client, patient_id).json()["id"]
    wait_for_status(client, f"/api/exams/{exam_id}")

    resp = client.get(f"/api/jobs/exam_analysis/{exam_id}")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "COMPLETED"
    assert body["result"]["aiSummary"] == "Anemia leve"
    assert body["error"] is None
    assert client.get("/api/jobs/unknown/abc").status_code == 404


def test_delete_exam_tolerates_missing_file(client, patient_id, wait_for_status):
    body = _upload(client, patient_id).json()
    wait_for_status(client, f"/api/exams/{body['id']}")
    Path(body["fileUrl"]).unlink()

    resp = client.delete(f"/api/exams/{body['id']}")

    assert resp.status_code == 200
    assert resp.json()["filesRemoved"] == 0
    assert client.get(f"/api/exams/{body['id']}").status_code == 404


def test_list_patient_exams(client, patient_id, wait_for_status):
    exam_id = _upload(client, patient_id).json()["id"]
    wait_for_status(client, f"/api/exams/{exam_id}")

    resp = client.get(f"/api/exams/patient/{patient_id}")

    assert resp.status_code == 200
    assert [item["id"] for item in resp.json()] == [exam_id]
