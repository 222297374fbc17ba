from datetime import date

import pytest

from clinicdesk.db.models import Consultation, Exam
from clinicdesk.db.session import session_scope
from clinicdesk.errors import NotFoundError
from clinicdesk.report_generation import (
    build_report_prompt,
    load_report_context,
    parse_report_response,
)

from conftest import REPORT_REPLY


def test_parse_report_sections():
    parsed = parse_report_response(REPORT_REPLY)

    assert parsed.summary == "Patient shows mild anaemia and fatigue."
    assert parsed.main_findings == ["Low haemoglobin", "Rouleaux formation"]
    assert parsed.red_blood_cells == "Rouleaux present"
    assert parsed.white_blood_cells == "Normal activity"
    assert parsed.platelets == "Mild aggregation"
    assert parsed.plasma == "Clear"
    assert parsed.supplementation == "Iron bisglycinate - 30mg - anaemia"
    assert parsed.phytotherapy == "Nettle tea - daily - mineral support"
    assert parsed.nutritional_guidance == "Increase leafy greens"
    assert "Increase leafy greens" in parsed.recommendations
    assert parsed.full_report_content == REPORT_REPLY


def test_parse_portuguese_headings():
    text = (
        "### RESUMO EXECUTIVO\nQuadro estável.\n\n"
        "### ACHADOS PRINCIPAIS\n- Ferritina baixa\n\n"
        "### ANÁLISE DETALHADA\n- **Hemácias:** Normocíticas\n"
    )

    parsed = parse_report_response(text)

    assert parsed.summary == "Quadro estável."
    assert parsed.main_findings == ["Ferritina baixa"]
    assert parsed.red_blood_cells == "Normocíticas"


def test_summary_falls_back_to_first_paragraph():
    parsed = parse_report_response("Free text report without headings.\n\nSecond paragraph.")

    assert parsed.summary == "Free text report without headings."
    assert parsed.main_findings == []


def test_context_uses_completed_exams_and_latest_consultation(session_factory, patient_id, user_id):
    with session_scope(session_factory) as session:
        session.add(
            Consultation(patient_id=patient_id, conducted_by=user_id, chief_complaint="Fadiga", status="COMPLETED")
        )
        session.add(
            Exam(
                patient_id=patient_id,
                file_name="a.pdf",
                file_type="pdf",
                processing_status="COMPLETED",
                category="Hemograma",
                exam_date=date(2024, 3, 10),
                ai_summary="Anemia leve",
                abnormal_values=[{"parameter": "Hemoglobina", "value": "10", "status": "LOW"}],
            )
        )
        session.add(
            Exam(patient_id=patient_id, file_name="b.pdf", file_type="pdf", processing_status="FAILED")
        )

    with session_scope(session_factory) as session:
        context = load_report_context(session, patient_id)

    assert context.chief_complaint == "Fadiga"
    assert [exam.category for exam in context.exams] == ["Hemograma"]

    prompt = build_report_prompt(context)
    assert "Ana Paula Costa Silva" in prompt
    assert "### Exam 1: Hemograma" in prompt
    assert "- Hemoglobina: 10 [LOW]" in prompt
    assert "### EXECUTIVE SUMMARY" in prompt


def test_context_rejects_foreign_consultation(session_factory, patient_id):
    with session_scope(session_factory) as session:
        with pytest.raises(NotFoundError):
            load_report_context(session, patient_id, "not-a-consultation")
        with pytest.raises(NotFoundError):
            load_report_context(session, "not-a-patient")


def test_generate_report_in_background(client, patient_id, anthropic_client, wait_for_status):
    resp = client.post("/api/reports/generate", json={"patientId": patient_id})

    assert resp.status_code == 202
    accepted = resp.json()
    assert accepted["kind"] == "report"
    assert accepted["status"] == "PROCESSING"

    report = wait_for_status(client, f"/api/reports/{accepted['id']}")
    assert report["processingStatus"] == "COMPLETED"
    assert report["status"] == "PENDING_REVIEW"
    assert report["summary"] == "Patient shows mild anaemia and fatigue."
    assert report["redBloodCells"] == "Rouleaux present"
    assert report["aiModel"] == "claude-test"
    assert report["consultationId"]

    consultation = client.get(f"/api/consultations/{report['consultationId']}").json()
    assert consultation["chiefComplaint"] == "Live blood analysis and general assessment"
    assert consultation["status"] == "COMPLETED"
    assert isinstance(anthropic_client.messages.calls[0]["messages"][0]["content"], str)


def test_generate_report_validation(client, patient_id):
    assert client.post("/api/reports/generate", json={}).status_code == 400
    assert client.post("/api/reports/generate", json={"patientId": "nope"}).status_code == 404
    resp = client.post("/api/reports/generate", json={"patientId": patient_id, "consultationId": "nope"})
    assert resp.status_code == 404
    assert client.get("/api/reports").json() == []


def test_sync_generation_failure_is_502_and_recorded(client, patient_id, anthropic_client):
    anthropic_client.messages.error = RuntimeError("overloaded")

    resp = client.post("/api/reports/generate/sync", json={"patientId": patient_id})

    assert resp.status_code == 502
    assert resp.json()["error"]["message"] == "Report generation failed: overloaded"
    [report] = client.get(f"/api/reports/patient/{patient_id}").json()
    assert report["processingStatus"] == "FAILED"
    assert report["summary"] is None


def test_regenerate_and_review(client, patient_id, anthropic_client, wait_for_status):
    anthropic_client.messages.error = RuntimeError("overloaded")
    report_id = client.post("/api/reports/generate", json={"patientId": patient_id}).json()["id"]
    assert wait_for_status(client, f"/api/reports/{report_id}")["processingStatus"] == "FAILED"

    anthropic_client.messages.error = None
    assert client.post(f"/api/reports/{report_id}/regenerate").status_code == 202
    regenerated = wait_for_status(client, f"/api/reports/{report_id}")
    assert regenerated["processingStatus"] == "COMPLETED"
    assert regenerated["processingError"] is None

    reviewed = client.put(
        f"/api/reports/{report_id}", json={"platelets": "Normal", "status": "APPROVED"}
    ).json()
    assert reviewed["platelets"] == "Normal"
    assert reviewed["status"] == "APPROVED"
    assert reviewed["reviewedAt"] is not None

    assert client.delete(f"/api/reports/{report_id}").status_code == 200
    assert client.get(f"/api/reports/{report_id}").status_code == 404
