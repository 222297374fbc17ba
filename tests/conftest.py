import os
import sys
import time
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

# Ensure the repository root is on sys.path so tests can import the clinicdesk package
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from clinicdesk.calendar_sync import CalendarSync  # noqa: E402
from clinicdesk.config import Settings  # noqa: E402
from clinicdesk.db.models import Patient, User, UserRole  # noqa: E402
from clinicdesk.db.session import create_db_engine, init_schema, make_session_factory, session_scope  # noqa: E402
from clinicdesk.exam_analysis import ExamAnalyzer  # noqa: E402
from clinicdesk.main import create_app  # noqa: E402
from clinicdesk.report_generation import ReportGenerator  # noqa: E402
from clinicdesk.services import build_services  # noqa: E402
from clinicdesk.transcription import AudioTranscriber  # noqa: E402


HEMOGRAM_REPLY = """Here is the structured analysis:

```json
{"category": "Hemograma", "examType": "Hemograma completo", "examDate": "2024-03-10",
 "abnormalValues": [{"parameter": "Hemoglobina", "value": "10", "reference": "12-16", "status": "LOW"}],
 "summary": "Anemia leve", "recommendations": ["Repeat in 30 days"], "confidence": 0.92}
```
"""

REPORT_REPLY = """### EXECUTIVE SUMMARY
Patient shows mild anaemia and fatigue.

### MAIN FINDINGS
- Low haemoglobin
- Rouleaux formation

### DETAILED ANALYSIS

#### Microscopy - Bright Field
- **Red blood cells:** Rouleaux present
- **White blood cells:** Normal activity
- **Platelets:** Mild aggregation
- **Plasma:** Clear

### CLINICAL CORRELATION
Findings match the reported tiredness.

### THERAPEUTIC GUIDANCE

#### Supplementation
- Iron bisglycinate - 30mg - anaemia

#### Phytotherapy
- Nettle tea - daily - mineral support

#### Nutritional Guidance
- Increase leafy greens

### FOLLOW-UP
- Suggested return: 30 days
"""


class FakeTranscriptions:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.response = SimpleNamespace(
            text=" Paciente relata cansaço há seis meses. ",
            duration=12.6,
            language="portuguese",
            segments=[{"start": 0.0, "end": 2.5, "text": " Paciente relata cansaço"}],
        )

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


class FakeOpenAI:
    """Stand-in for ``openai.OpenAI`` exposing ``audio.transcriptions.create``."""

    def __init__(self) -> None:
        self.transcriptions = FakeTranscriptions()
        self.audio = SimpleNamespace(transcriptions=self.transcriptions)


class FakeMessages:
    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.exam_reply = HEMOGRAM_REPLY
        self.report_reply = REPORT_REPLY

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        content = kwargs["messages"][0]["content"]
        text = self.exam_reply if isinstance(content, list) else self.report_reply
        return SimpleNamespace(
            model=kwargs["model"],
            content=[SimpleNamespace(type="text", text=text)],
            usage=SimpleNamespace(input_tokens=1200, output_tokens=300),
        )


class FakeAnthropic:
    """Stand-in for ``anthropic.Anthropic`` exposing ``messages.create``."""

    def __init__(self) -> None:
        self.messages = FakeMessages()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'clinic.db'}",
        upload_dir=tmp_path / 'uploads',
        cors_origins=("http://testserver",),
        calendar_uid_domain="test.clinicdesk",
        calendar_organizer_email="clinic@example.com",
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings)
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def openai_client() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def anthropic_client() -> FakeAnthropic:
    return FakeAnthropic()


@pytest.fixture
def services(settings, session_factory, openai_client, anthropic_client):
    return build_services(
        settings,
        session_factory=session_factory,
        transcriber=AudioTranscriber(openai_client, model="whisper-1", language="pt"),
        exam_analyzer=ExamAnalyzer(anthropic_client, model="claude-test"),
        report_generator=ReportGenerator(anthropic_client, model="claude-test"),
        calendar=CalendarSync(settings),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


@pytest.fixture
def patient_id(session_factory) -> str:
    with session_scope(session_factory) as session:
        patient = Patient(
            full_name="Ana Paula Costa Silva",
            phone="(61) 98765-4321",
            email="anapaula@example.com",
            blood_type="O+",
        )
        session.add(patient)
        session.flush()
        return patient.id


@pytest.fixture
def user_id(session_factory) -> str:
    with session_scope(session_factory) as session:
        user = User(email="doctor@example.com", name="Dr. Example", role=UserRole.ADMIN.value)
        session.add(user)
        session.flush()
        return user.id


@pytest.fixture
def wait_for_status() -> Callable[..., dict]:
    """Poll ``url`` until ``field`` leaves PROCESSING or the deadline passes."""

    def _wait(client, url: str, field: str = "processingStatus", timeout: float = 5.0) -> dict:
        deadline = time.time() + timeout
        last_payload = None
        while time.time() < deadline:
            resp = client.get(url)
            if resp.status_code == 200:
                last_payload = resp.json()
                if last_payload.get(field) not in ("PENDING", "PROCESSING"):
                    return last_payload
            time.sleep(0.05)
        raise AssertionError(f"{url} did not finish processing: {last_payload}")

    return _wait
