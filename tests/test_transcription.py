import pytest

from src.vectorization.transcription import split_audio, transcribe_chalk_talk, estimate_duration
from tests.conftest import FakeLLM


MB = 1024 * 1024


def test_estimate_duration_one_minute_per_megabyte():
    assert estimate_duration(MB) == 60


def test_split_audio_small_file_is_one_chunk():
    data = b"x" * 1000
    assert list(split_audio(data)) == [data]


def test_split_audio_covers_all_bytes():
    data = bytes(range(256)) * (25 * MB // 256)  # ~25 minutes

    chunks = list(split_audio(data))

    assert len(chunks) == 3
    assert b"".join(chunks) == data


def test_transcription_joins_chunks(store, files):
    talk = store.insert("chalk_talks", {"transcription_status": "pending"})
    files.upload("chalk-talks", "p1/talk.mp3", b"audio")
    llm = FakeLLM(transcripts=["Hello and welcome."])

    result = transcribe_chalk_talk(talk["id"], "p1/talk.mp3", store, files, llm)

    assert result == {
        "success": True,
        "hasErrors": False,
        "transcriptionLength": len("Hello and welcome."),
        "message": "Transcription completed successfully",
    }
    assert llm.calls[0]["filename"] == "chunk-0.mp3"
    row = store.get("chalk_talks", talk["id"])
    assert row["transcription"] == "Hello and welcome."
    assert row["transcription_status"] == "completed"


def test_transcription_failure_is_recorded(store, files):
    talk = store.insert("chalk_talks", {"transcription_status": "pending"})
    files.upload("chalk-talks", "p1/talk.webm", b"audio")
    llm = FakeLLM(transcripts=[RuntimeError("whisper down")])

    with pytest.raises(RuntimeError, match="all chunks failed"):
        transcribe_chalk_talk(talk["id"], "p1/talk.webm", store, files, llm)

    row = store.get("chalk_talks", talk["id"])
    assert row["transcription_status"] == "error"
    assert "all chunks failed" in row["transcription_error"]


def test_transcription_missing_file(store, files):
    talk = store.insert("chalk_talks", {})
    with pytest.raises(FileNotFoundError):
        transcribe_chalk_talk(talk["id"], "p1/none.mp3", store, files, FakeLLM())
    assert store.get("chalk_talks", talk["id"])["transcription_status"] == "error"
