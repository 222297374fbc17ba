from clinicdesk import file_storage
from clinicdesk.file_storage import (
    LocalFileStorage,
    generate_unique_filename,
    sanitize_filename,
    validate_file_size,
    validate_file_type,
)


def test_sanitize_filename_strips_paths_and_symbols():
    assert sanitize_filename("../../etc/passwd") == "passwd"
    assert sanitize_filename("exame de sangue (1).pdf") == "exame_de_sangue_1_.pdf"
    assert len(sanitize_filename("...")) == 32


def test_unique_names_differ():
    first = generate_unique_filename("a.pdf")
    second = generate_unique_filename("a.pdf")
    assert first != second
    assert first.endswith("-a.pdf")


def test_validate_file_type_supports_wildcards():
    allowed = ("audio/*", "application/pdf")
    assert validate_file_type("audio/webm", allowed)
    assert validate_file_type("Application/PDF", allowed)
    assert not validate_file_type("text/plain", allowed)
    assert not validate_file_type(None, allowed)


def test_validate_file_size():
    assert validate_file_size(10, 10)
    assert not validate_file_size(0, 10)
    assert not validate_file_size(11, 10)


def test_save_and_delete(tmp_path):
    storage = LocalFileStorage(tmp_path)

    stored = storage.save(b"data", "../laudo.pdf", "exams")

    assert stored.path.parent == (tmp_path / "exams").resolve()
    assert stored.path.read_bytes() == b"data"
    assert stored.size == 4
    assert storage.delete_many([stored.path, stored.path, None]) == 1
    assert not stored.path.exists()


class RecordingLogger:
    def __init__(self):
        self.events = []

    def info(self, event, **kw):
        self.events.append((event, kw))

    warning = info


def test_storage_logs_keyword_context(tmp_path, monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(file_storage, "logger", recorder)
    storage = LocalFileStorage(tmp_path)

    stored = storage.save(b"data", "laudo.pdf", "exams")
    storage.delete(stored.path)
    storage.delete(stored.path)

    assert [event for event, _ in recorder.events] == [
        "file_storage.persisted",
        "file_storage.deleted",
        "file_storage.already_absent",
    ]
    assert recorder.events[0][1] == {"folder": "exams", "name": stored.name, "size": 4}
    assert recorder.events[2][1] == {"path": str(stored.path)}
