"""
User-owned vectorised reference documents.

A document is a set of `vectorized_document` vectors sharing a documentId;
the first chunk carries isMetadata=True and stands in for the document in
listings.
"""

import re
import uuid
import logging
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

from src.core.enums import VectorType
from src.vectorization.chunking import semantic_chunks

logger = logging.getLogger(__name__)

MAX_TOKENS_PER_CHUNK = 1000
MAX_FILENAME_MATCHES = 10000


def clean_text(text: Any) -> str:
    """Drop '[object Object]' artefacts left by some clients."""
    text = text if isinstance(text, str) else str(text)
    if "[object Object]" in text:
        logger.warning("Text contains [object Object], cleaning up")
        text = text.replace("[object Object]", "")
        text = re.sub(r"\{\s*\}", "", text).strip()
    return text


class VectorizedDocuments:
    """Store, list and delete a user's vectorised documents."""

    def __init__(self, index):
        self.index = index

    def store(
        self,
        user_id: str,
        file_name: str,
        text: Any,
        page_info: List[Dict[str, int]],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        text = clean_text(text)
        chunks = semantic_chunks(text, page_info, MAX_TOKENS_PER_CHUNK)
        logger.info(f"Created {len(chunks)} semantic chunks across {len(page_info)} pages")

        document_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc).isoformat()
        vector_ids = []

        for i, chunk in enumerate(chunks):
            pages = chunk["page_numbers"]
            chunk_metadata = {
                "userId": user_id,
                "fileName": file_name,
                "text": chunk["text"],
                "chunkIndex": i,
                "totalChunks": len(chunks),
                "type": VectorType.VECTORIZED_DOCUMENT.value,
                "documentId": document_id,
                "createdAt": created_at,
                "isMetadata": i == 0,
                "pageNumbers": [str(p) for p in pages],
                "startPage": str(min(pages)),
                "endPage": str(max(pages)),
                **(metadata or {}),
            }
            vector_ids.append(self.index.upsert_text(chunk["text"], chunk_metadata))
            logger.info(f"Stored chunk {i + 1}/{len(chunks)} (pages {', '.join(chunk_metadata['pageNumbers'])})")

        return {
            "success": True,
            "documentId": document_id,
            "chunks": len(chunks),
            "vectorIds": vector_ids,
        }

    def list_documents(self, user_id: str) -> List[Dict[str, Any]]:
        matches = self.index.list_by_metadata({
            "userId": user_id,
            "type": VectorType.VECTORIZED_DOCUMENT.value,
            "isMetadata": True,
        }, top_k=100)

        documents = []
        for match in matches:
            meta = match["metadata"]
            documents.append({
                "id": meta.get("documentId"),
                "fileName": meta.get("fileName"),
                "fileType": meta.get("fileType") or "unknown",
                "createdAt": meta.get("createdAt"),
                "userId": user_id,
                "chunks": meta.get("totalChunks") or 1,
            })
        return documents

    def get_vectors(self, user_id: str, document_id: str) -> List[Dict[str, Any]]:
        return self.index.list_by_metadata({
            "userId": user_id,
            "documentId": document_id,
            "type": VectorType.VECTORIZED_DOCUMENT.value,
        })

    def delete_document(self, user_id: str, document_id: str) -> int:
        """Delete a document's vectors; 0 means not found for this user."""
        ids = [m["id"] for m in self.get_vectors(user_id, document_id)]
        return self.index.delete_ids(ids) if ids else 0

    def delete_by_filename(self, user_id: str, file_name: str) -> int:
        matches = self.index.list_by_metadata({
            "$and": [
                {"userId": {"$eq": user_id}},
                {"fileName": {"$eq": file_name}},
            ]
        }, top_k=MAX_FILENAME_MATCHES)
        ids = [m["id"] for m in matches]
        return self.index.delete_ids(ids) if ids else 0
