"""
Chalk talk transcription with Whisper.

Long recordings exceed Whisper's upload limit, so the audio is cut into
~10 minute byte ranges (duration is estimated from file size at ~1 MB per
minute) and the transcribed parts are joined.
"""

import math
import logging
from typing import Dict, Any

from src.core.enums import ProcessingStatus

logger = logging.getLogger(__name__)

CHUNK_SECONDS = 600
BUCKET = "chalk-talks"


def estimate_duration(size_bytes: int) -> float:
    """Seconds of audio, assuming ~128 kbps (1 MB per minute)."""
    return size_bytes / (1024 * 1024) * 60


def split_audio(data: bytes, chunk_seconds: int = CHUNK_SECONDS):
    """Yield byte ranges covering roughly chunk_seconds of audio each."""
    duration = estimate_duration(len(data))
    num_chunks = max(1, math.ceil(duration / chunk_seconds))
    for i in range(num_chunks):
        start = math.floor(i * chunk_seconds / duration * len(data)) if duration else 0
        end_time = min((i + 1) * chunk_seconds, duration)
        end = math.floor(end_time / duration * len(data)) if duration else len(data)
        yield data[start:end]


def transcribe_chalk_talk(chalk_talk_id: str, file_path: str, store, files, llm) -> Dict[str, Any]:
    """
    Transcribe a chalk talk recording and store the text on its row.

    Returns:
        {"success": True, "hasErrors": bool, "transcriptionLength": int, "message": str}

    Raises:
        Exception: After recording status=error on the row
    """
    try:
        store.update("chalk_talks", {"id": chalk_talk_id}, {
            "transcription_status": ProcessingStatus.PROCESSING.value,
            "transcription_error": None,
        })

        audio = files.download(BUCKET, file_path)
        extension = file_path.rsplit(".", 1)[-1] if "." in file_path else "mp3"

        parts = []
        has_errors = False
        for i, chunk in enumerate(split_audio(audio)):
            try:
                text = llm.transcribe(chunk, filename=f"chunk-{i}.{extension}", language="en")
                if text and text.strip():
                    parts.append(text)
                else:
                    logger.warning(f"Empty transcription for chunk {i}")
                    has_errors = True
            except Exception as e:
                logger.error(f"Chunk {i} failed to transcribe: {e}")
                has_errors = True

        transcription = " ".join(parts)
        if not transcription:
            raise RuntimeError("Failed to generate transcription: all chunks failed")

        store.update("chalk_talks", {"id": chalk_talk_id}, {
            "transcription": transcription,
            "transcription_status": (ProcessingStatus.COMPLETED_WITH_ERRORS if has_errors else ProcessingStatus.COMPLETED).value,
            "transcription_error": "Some chunks failed to transcribe" if has_errors else None,
        })

        logger.info(f"Transcribed chalk talk {chalk_talk_id}: {len(transcription)} chars")
        return {
            "success": True,
            "hasErrors": has_errors,
            "transcriptionLength": len(transcription),
            "message": "Transcription completed with some errors" if has_errors else "Transcription completed successfully",
        }

    except Exception as e:
        logger.error(f"Transcription failed for {chalk_talk_id}: {e}")
        try:
            store.update("chalk_talks", {"id": chalk_talk_id}, {
                "transcription_status": ProcessingStatus.ERROR.value,
                "transcription_error": str(e),
            })
        except Exception as db_error:
            logger.error(f"Failed to record transcription error: {db_error}")
        raise
