"""
Pinecone vector index adapter.

Every vector in the index carries a `type` metadata tag (see
src.core.enums.VectorType) plus owner ids (projectId, foaId, userId), so a
single index holds FOAs, project materials and user documents.
"""

import os
import uuid
import logging
from typing import List, Dict, Any, Optional

from pinecone import Pinecone
from openai import OpenAI

logger = logging.getLogger(__name__)


EMBEDDING_MODEL = "text-embedding-3-large"
EMBEDDING_DIMENSION = 3072
LIST_TOP_K = 1000
DELETE_BATCH_SIZE = 100


class PineconeVectorIndex:
    """Pinecone adapter for embedding, storing and querying vectors."""

    def __init__(self):
        """Initialize Pinecone and OpenAI clients."""
        self.pinecone_api_key = os.getenv("PINECONE_API_KEY")
        self.openai_api_key = os.getenv("OPENAI_API_KEY")

        if not self.pinecone_api_key:
            raise ValueError("PINECONE_API_KEY environment variable is required")
        if not self.openai_api_key:
            raise ValueError("OPENAI_API_KEY environment variable is required")

        try:
            self.pc = Pinecone(api_key=self.pinecone_api_key)
            self.index_name = os.getenv("PINECONE_INDEX_NAME", "grant-assistant")
            self.index = self.pc.Index(self.index_name)

            self.openai_client = OpenAI(api_key=self.openai_api_key)
            self.embedding_model = EMBEDDING_MODEL

            logger.info(f"Pinecone index '{self.index_name}' connected successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Pinecone/OpenAI clients: {e}")
            raise

    def embed(self, text: str) -> List[float]:
        """
        Generate embedding vector for text using OpenAI.

        Args:
            text: Input text to embed

        Returns:
            List of floats representing the embedding vector
        """
        try:
            response = self.openai_client.embeddings.create(
                model=self.embedding_model,
                input=text
            )
            return response.data[0].embedding

        except Exception as e:
            logger.error(f"Error generating embedding: {e}")
            raise

    def upsert_vector(self, values: List[float], metadata: Dict[str, Any], vector_id: Optional[str] = None) -> str:
        """Store one vector and return its id (uuid4 when not given)."""
        vector_id = vector_id or str(uuid.uuid4())
        # Pinecone rejects null metadata values
        clean = {k: v for k, v in metadata.items() if v is not None}
        try:
            self.index.upsert(vectors=[{"id": vector_id, "values": values, "metadata": clean}])
            return vector_id
        except Exception as e:
            logger.error(f"Error upserting vector {vector_id}: {e}")
            raise

    def upsert_text(self, text: str, metadata: Dict[str, Any], vector_id: Optional[str] = None) -> str:
        """Embed text and store it."""
        return self.upsert_vector(self.embed(text), metadata, vector_id)

    def query(
        self,
        vector: List[float],
        top_k: int = 10,
        filter: Optional[Dict[str, Any]] = None,
        include_values: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Query by vector with an optional metadata filter.

        Returns:
            [{"id": ..., "score": 0.85, "metadata": {...}}, ...]
        """
        query_params: Dict[str, Any] = {
            "vector": vector,
            "top_k": top_k,
            "include_metadata": True,
            "include_values": include_values,
        }
        if filter:
            query_params["filter"] = filter

        try:
            results = self.index.query(**query_params)
        except Exception as e:
            logger.error(f"Error performing vector search: {e}")
            raise

        matches = []
        for match in results.matches:
            item = {
                "id": match.id,
                "score": float(match.score or 0.0),
                "metadata": dict(match.metadata or {}),
            }
            if include_values:
                item["values"] = list(match.values or [])
            matches.append(item)

        logger.info(f"Vector search returned {len(matches)} results")
        return matches

    def query_text(self, text: str, top_k: int = 10, filter: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Embed a query string and search."""
        return self.query(self.embed(text), top_k=top_k, filter=filter)

    def list_by_metadata(self, filter: Dict[str, Any], top_k: int = LIST_TOP_K) -> List[Dict[str, Any]]:
        """
        List vectors matching a metadata filter.

        Pinecone has no metadata scan, so this queries with a zero vector;
        scores are meaningless here.
        """
        return self.query([0.0] * EMBEDDING_DIMENSION, top_k=top_k, filter=filter)

    def delete_ids(self, ids: List[str]) -> int:
        """Delete vectors by id in batches, returning the number requested."""
        ids = [i for i in ids if i]
        for start in range(0, len(ids), DELETE_BATCH_SIZE):
            batch = ids[start:start + DELETE_BATCH_SIZE]
            try:
                self.index.delete(ids=batch)
            except Exception as e:
                logger.error(f"Error deleting vector batch at {start}: {e}")
                raise
        if ids:
            logger.info(f"Deleted {len(ids)} vectors")
        return len(ids)

    def get_index_stats(self) -> Dict[str, Any]:
        """
        Get Pinecone index statistics.

        Returns:
            {"total_vectors": 4500, "dimension": 3072, "index_fullness": 0.05}
        """
        try:
            stats = self.index.describe_index_stats()
            result = {
                "total_vectors": stats.total_vector_count,
                "dimension": stats.dimension,
                "index_fullness": stats.index_fullness,
            }
            logger.info(f"Index stats: {result['total_vectors']} vectors, dimension {result['dimension']}")
            return result

        except Exception as e:
            logger.error(f"Error getting index stats: {e}")
            raise
