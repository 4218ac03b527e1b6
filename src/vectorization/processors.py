"""
Vectorisation processors for project materials.

Each processor validates a database row, turns it into text, embeds the
text into Pinecone with `type` and `projectId` metadata, and records the
result back on the row.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

from src.core.enums import VectorType, ProcessingStatus, SUPPORTED_DOCUMENT_TYPES
from src.vectorization.chunking import split_into_chunks, chunk_by_tokens, count_tokens
from src.vectorization.text_extraction import extract_text

logger = logging.getLogger(__name__)

TEN_MB = 10 * 1024 * 1024

FIGURE_PROMPT = "Please describe this scientific figure in detail."


@dataclass
class ProcessingResult:
    pinecone_ids: List[str]
    chunks: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text_stats(text: str) -> Dict[str, int]:
    return {"charCount": len(text), "wordCount": len(text.split())}


class ContentProcessor(ABC):
    """Base class: holds the row plus the store/index/file dependencies."""

    table: str = ""

    def __init__(self, content: Dict[str, Any], project_id: Optional[str], store, index, files=None, llm=None):
        self.content = content
        self.project_id = project_id
        self.store = store
        self.index = index
        self.files = files
        self.llm = llm

    @abstractmethod
    def validate(self) -> bool:
        ...

    @abstractmethod
    def process(self) -> ProcessingResult:
        ...

    def store_vector(self, text: str, metadata: Dict[str, Any]) -> str:
        """Embed text and upsert it with projectId added."""
        metadata = dict(metadata)
        metadata["projectId"] = self.project_id
        return self.index.upsert_text(text, metadata)

    def update_row(self, values: Dict[str, Any]):
        self.store.update(self.table, {"id": self.content["id"]}, values)

    def update_status(self, status: str):
        self.update_row({"vectorization_status": status})

    def _download(self, bucket: str, path: str) -> Optional[bytes]:
        try:
            return self.files.download(bucket, path)
        except FileNotFoundError:
            logger.error(f"File not found: {bucket}/{path}")
            return None


class ResearchDescriptionProcessor(ContentProcessor):
    table = "research_descriptions"
    bucket = "research-descriptions"

    _data: Optional[bytes] = None

    def _file_bytes(self) -> Optional[bytes]:
        if self._data is None:
            self._data = self._download(self.bucket, self.content["file_path"])
        return self._data

    def validate(self) -> bool:
        file_path = self.content.get("file_path")
        file_type = self.content.get("file_type")
        if not file_path or not file_type:
            logger.error(f"Research description {self.content.get('id')} missing file_path/file_type")
            return False

        if file_type not in SUPPORTED_DOCUMENT_TYPES:
            logger.error(f"Invalid file type: {file_type}")
            return False

        data = self._file_bytes()
        if data is None:
            return False
        if len(data) > TEN_MB:
            logger.error(f"File too large: {len(data)}")
            return False
        return True

    def process(self) -> ProcessingResult:
        logger.info(f"Processing research description {self.content['id']} ({self.content.get('file_name')})")

        data = self._file_bytes()
        if data is None:
            raise ValueError(f"Failed to download file: {self.content['file_path']}")

        text = extract_text(data, self.content["file_type"])
        chunks = split_into_chunks(text)
        logger.info(f"Split into {len(chunks)} chunks")

        pinecone_ids = []
        for i, chunk in enumerate(chunks, start=1):
            pinecone_ids.append(self.store_vector(chunk, {
                "type": VectorType.RESEARCH_DESCRIPTION.value,
                "fileName": self.content.get("file_name"),
                "fileType": self.content.get("file_type"),
                "chunkIndex": i,
                "totalChunks": len(chunks),
                "text": chunk,
                **_text_stats(chunk),
            }))

        self.update_row({
            "vectorization_status": ProcessingStatus.COMPLETED.value,
            "last_vectorized_at": _now(),
            "pinecone_ids": pinecone_ids,
        })

        return ProcessingResult(
            pinecone_ids=pinecone_ids,
            chunks=chunks,
            metadata={
                "fileName": self.content.get("file_name"),
                "fileType": self.content.get("file_type"),
                "totalChunks": len(chunks),
            },
        )


class ScientificFigureProcessor(ContentProcessor):
    table = "scientific_figures"
    bucket = "scientific-figures"

    def validate(self) -> bool:
        image_path = self.content.get("image_path")
        if not image_path:
            return False
        data = self._download(self.bucket, image_path)
        return data is not None and len(data) <= TEN_MB

    def process(self) -> ProcessingResult:
        try:
            data = self._download(self.bucket, self.content["image_path"])
            if data is None:
                raise ValueError(f"Failed to download image: {self.content['image_path']}")

            description = self.llm.describe_image(data, FIGURE_PROMPT, max_tokens=500)

            caption = self.content.get("caption")
            full_text = f"Caption: {caption}\n\nDescription: {description}" if caption else description

            pinecone_id = self.store_vector(full_text, {
                "type": VectorType.SCIENTIFIC_FIGURE.value,
                "figureId": self.content["id"],
                "caption": caption or None,
                "text": full_text,
                **_text_stats(full_text),
            })

            self.update_row({
                "vectorization_status": ProcessingStatus.COMPLETED.value,
                "ai_description": description,
                "pinecone_id": pinecone_id,
            })

            return ProcessingResult(
                pinecone_ids=[pinecone_id],
                metadata={"figureId": self.content["id"], "description": description},
            )

        except Exception as e:
            logger.error(f"Error processing figure {self.content.get('id')}: {e}")
            try:
                self.update_status(ProcessingStatus.ERROR.value)
            except Exception as status_error:
                logger.error(f"Failed to record figure error status: {status_error}")
            raise


class ChalkTalkProcessor(ContentProcessor):
    table = "chalk_talks"

    FULL_TRANSCRIPTION_TOKENS = 4000

    def validate(self) -> bool:
        transcription = self.content.get("transcription")
        if not transcription or not transcription.strip():
            logger.error(f"Chalk talk {self.content.get('id')} has no transcription")
            return False
        if self.content.get("transcription_status") != ProcessingStatus.COMPLETED.value:
            logger.error(f"Chalk talk {self.content.get('id')} transcription not completed")
            return False
        if self.content.get("vectorization_status") == ProcessingStatus.COMPLETED.value:
            logger.info(f"Chalk talk {self.content.get('id')} already vectorized")
            return False
        return True

    def process(self) -> ProcessingResult:
        self.update_status(ProcessingStatus.PROCESSING.value)

        transcription = self.content["transcription"]
        chunks = chunk_by_tokens(transcription)
        logger.info(f"Split chalk talk into {len(chunks)} chunks")

        pinecone_ids = []
        errors = []
        for i, chunk in enumerate(chunks, start=1):
            is_full = len(chunks) == 1 and count_tokens(chunk) <= self.FULL_TRANSCRIPTION_TOKENS
            try:
                pinecone_ids.append(self.store_vector(chunk, {
                    "type": VectorType.CHALK_TALK.value,
                    "chalkTalkId": self.content["id"],
                    "chunkIndex": i,
                    "totalChunks": len(chunks),
                    "documentType": "full_transcription" if is_full else "chunk",
                    "text": chunk,
                    **_text_stats(chunk),
                }))
            except Exception as e:
                errors.append(f"Error processing chunk {i}: {e}")
                logger.error(errors[-1])

        if not pinecone_ids:
            self.update_status(ProcessingStatus.FAILED.value)
            raise RuntimeError("Failed to process any chunks successfully")

        self.update_row({
            "vectorization_status": ProcessingStatus.COMPLETED.value,
            "pinecone_ids": pinecone_ids,
        })

        return ProcessingResult(
            pinecone_ids=pinecone_ids,
            chunks=chunks,
            metadata={"chalkTalkId": self.content["id"], "totalChunks": len(chunks), "errors": errors},
        )


class ResearcherProcessor(ContentProcessor):
    table = "researcher_profiles"

    def validate(self) -> bool:
        return bool(self.content.get("name") and self.content.get("project_id"))

    def process(self) -> ProcessingResult:
        full_text = "\n\n".join(part for part in [
            f"Name: {self.content['name']}",
            f"Title: {self.content.get('title') or 'N/A'}",
            f"Institution: {self.content.get('institution') or 'N/A'}",
            self.content.get("bio") or "",
        ] if part)

        pinecone_id = self.store_vector(full_text, {
            "type": VectorType.RESEARCHER.value,
            "name": self.content["name"],
            "title": self.content.get("title"),
            "institution": self.content.get("institution"),
            "bio": self.content.get("bio"),
            "text": full_text,
        })

        self.update_row({
            "vectorization_status": ProcessingStatus.COMPLETED.value,
            "last_vectorized_at": _now(),
            "pinecone_id": pinecone_id,
        })

        return ProcessingResult(
            pinecone_ids=[pinecone_id],
            chunks=[full_text],
            metadata={
                "name": self.content["name"],
                "title": self.content.get("title"),
                "institution": self.content.get("institution"),
            },
        )


PROCESSORS = {
    "description": ResearchDescriptionProcessor,
    "figure": ScientificFigureProcessor,
    "chalk_talk": ChalkTalkProcessor,
    "researcher": ResearcherProcessor,
}
