import pytest

from clinicdesk.errors import CollaboratorError
from clinicdesk.transcription import AudioTranscriber, audio_mime_type


def test_audio_mime_type():
    assert audio_mime_type("consulta.M4A") == "audio/mp4"
    assert audio_mime_type("consulta.webm") == "audio/webm"
    assert audio_mime_type("consulta.bin") == "audio/mpeg"


def test_transcribe_returns_trimmed_text(tmp_path, openai_client):
    audio = tmp_path / "consulta.wav"
    audio.write_bytes(b"RIFF fake")

    result = AudioTranscriber(openai_client, language="pt").transcribe(audio)

    assert result.text == "Paciente relata cansaço há seis meses."
    assert result.record_fields()["duration"] == 13
    assert result.language == "portuguese"
    [call] = openai_client.transcriptions.calls
    assert call["file"][0] == "consulta.wav"
    assert call["file"][2] == "audio/wav"


def test_missing_file_and_missing_key(tmp_path, openai_client):
    with pytest.raises(CollaboratorError, match="file not found"):
        AudioTranscriber(openai_client).transcribe(tmp_path / "missing.wav")
    assert openai_client.transcriptions.calls == []

    audio = tmp_path / "consulta.wav"
    audio.write_bytes(b"RIFF fake")
    with pytest.raises(CollaboratorError, match="OPENAI_API_KEY"):
        AudioTranscriber(None).transcribe(audio)


def test_api_error_is_wrapped(tmp_path, openai_client):
    audio = tmp_path / "consulta.wav"
    audio.write_bytes(b"RIFF fake")
    openai_client.transcriptions.error = RuntimeError("quota exceeded")

    with pytest.raises(CollaboratorError) as info:
        AudioTranscriber(openai_client).transcribe(audio)
    assert info.value.message == "Audio transcription failed: quota exceeded"
