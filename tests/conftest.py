"""
Shared test doubles.

FakeStore and FakeIndex keep rows and vectors in memory with the same
method surface as PostgresStore and PineconeVectorIndex; FakeLLM replays
scripted responses and records every call.
"""

import os
import sys
import uuid
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from src.storage.file_store import LocalFileStore
from src.storage.postgres_store import DuplicateRecordError


UNIQUE_COLUMNS = {
    "foas": [("foa_code",), ("grant_url",)],
    "completed_documents": [("document_id", "project_id")],
    "recommended_equipment": [("project_id",)],
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FakeStore:
    """In-memory stand-in for PostgresStore."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        for table, rows in (tables or {}).items():
            for row in rows:
                self.insert(table, row)

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
        for column, value in (filters or {}).items():
            actual = row.get(column)
            if isinstance(value, (list, tuple, set)):
                if actual not in value and str(actual) not in {str(v) for v in value}:
                    return False
            elif value is None:
                if actual is not None:
                    return False
            elif actual != value and str(actual) != str(value):
                return False
        return True

    def get(self, table, row_id):
        for row in self._rows(table):
            if str(row.get("id")) == str(row_id):
                return dict(row)
        return None

    def select(self, table, filters=None, order_by=None, limit=None, offset=None):
        rows = [dict(r) for r in self._rows(table) if self._matches(r, filters)]
        for term in reversed(order_by or []):
            column = term.lstrip("-")
            rows.sort(
                key=lambda r: (r.get(column) is None, r.get(column) if r.get(column) is not None else ""),
                reverse=term.startswith("-"),
            )
        rows = rows[offset or 0:]
        return rows[:limit] if limit is not None else rows

    def _check_unique(self, table, values, ignore=None):
        for columns in UNIQUE_COLUMNS.get(table, []):
            if any(values.get(c) in (None, "") for c in columns):
                continue
            for row in self._rows(table):
                if row is ignore:
                    continue
                if all(row.get(c) == values.get(c) for c in columns):
                    raise DuplicateRecordError(f"{table} {columns} already exists")

    def insert(self, table, values):
        row = dict(values)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", _now())
        self._check_unique(table, row)
        self._rows(table).append(row)
        return dict(row)

    def update(self, table, filters, values):
        updated = []
        for row in self._rows(table):
            if self._matches(row, filters):
                row.update(values)
                updated.append(dict(row))
        return updated

    def delete(self, table, filters):
        rows = self._rows(table)
        kept = [r for r in rows if not self._matches(r, filters)]
        self.tables[table] = kept
        return len(rows) - len(kept)

    def upsert(self, table, values, conflict):
        for row in self._rows(table):
            if all(str(row.get(c)) == str(values.get(c)) for c in conflict):
                row.update(values)
                return dict(row)
        return self.insert(table, values)

    def search_organizations(self, query, limit=20, offset=0):
        rows = sorted(
            (dict(r) for r in self._rows("organizations") if query.lower() in (r.get("name") or "").lower()),
            key=lambda r: r["name"],
        )
        return rows[offset:offset + limit], len(rows)

    def list_foas(self, agency=None, grant_type=None, deadline_after=None, deadline_before=None, limit=10, offset=0):
        rows = [dict(r) for r in self._rows("foas")]
        if agency:
            rows = [r for r in rows if r.get("agency") == agency]
        if grant_type:
            rows = [r for r in rows if grant_type in (r.get("grant_type") or {})]
        return rows[offset:offset + limit]

    def ping(self):
        return True


def matches_filter(metadata: Dict[str, Any], condition: Dict[str, Any]) -> bool:
    """Evaluate the subset of Pinecone's filter language the service uses."""
    for key, value in condition.items():
        if key == "$and":
            if not all(matches_filter(metadata, c) for c in value):
                return False
        elif key == "$or":
            if not any(matches_filter(metadata, c) for c in value):
                return False
        elif isinstance(value, dict):
            actual = metadata.get(key)
            for op, expected in value.items():
                if op == "$eq" and actual != expected:
                    return False
                if op == "$gte" and (actual is None or actual < expected):
                    return False
                if op == "$lte" and (actual is None or actual > expected):
                    return False
                if op == "$in" and actual not in expected:
                    return False
        elif metadata.get(key) != value:
            return False
    return True


class FakeIndex:
    """In-memory stand-in for PineconeVectorIndex.

    Query scores are the share of query words found in the stored text,
    mapped onto [-1, 1] like cosine similarity.
    """

    def __init__(self):
        self.vectors: Dict[str, Dict[str, Any]] = {}
        self.deleted: List[str] = []

    def embed(self, text):
        return [float(len(text))]

    def upsert_text(self, text, metadata, vector_id=None):
        vector_id = vector_id or str(uuid.uuid4())
        self.vectors[vector_id] = {
            "text": text,
            "metadata": {k: v for k, v in metadata.items() if v is not None},
        }
        return vector_id

    def add(self, metadata, text=None, vector_id=None):
        return self.upsert_text(text or metadata.get("text") or "", metadata, vector_id)

    def _score(self, query, text):
        words = set(query.lower().split())
        if not words:
            return 0.0
        found = sum(1 for w in words if w in text.lower())
        return 2 * found / len(words) - 1

    def query_text(self, text, top_k=10, filter=None):
        matches = [
            {"id": vid, "score": self._score(text, v["text"]), "metadata": dict(v["metadata"])}
            for vid, v in self.vectors.items()
            if matches_filter(v["metadata"], filter or {})
        ]
        matches.sort(key=lambda m: m["score"], reverse=True)
        return matches[:top_k]

    def list_by_metadata(self, filter, top_k=1000):
        return [
            {"id": vid, "score": 0.0, "metadata": dict(v["metadata"])}
            for vid, v in self.vectors.items()
            if matches_filter(v["metadata"], filter or {})
        ][:top_k]

    def delete_ids(self, ids):
        ids = [i for i in ids if i]
        for vector_id in ids:
            self.vectors.pop(vector_id, None)
            self.deleted.append(vector_id)
        return len(ids)

    def get_index_stats(self):
        return {"total_vectors": len(self.vectors), "dimension": 1, "index_fullness": 0.0}


class FakeLLM:
    """Replays scripted chat responses in order.

    A response may be a string, an exception instance (raised) or a
    callable taking the messages.
    """

    def __init__(self, responses=None, transcripts=None, image_description="A bar chart of results."):
        self.responses = list(responses or [])
        self.transcripts = list(transcripts or [])
        self.image_description = image_description
        self.calls: List[Dict[str, Any]] = []

    def chat(self, messages, **kwargs):
        self.calls.append({"messages": messages, **kwargs})
        if not self.responses:
            raise AssertionError("FakeLLM ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(messages)
        return response

    def describe_image(self, image_bytes, prompt, max_tokens=500):
        self.calls.append({"image": len(image_bytes), "prompt": prompt, "max_tokens": max_tokens})
        return self.image_description

    def transcribe(self, audio_bytes, filename="audio.webm", language="en"):
        self.calls.append({"audio": len(audio_bytes), "filename": filename})
        if not self.transcripts:
            return "transcribed text"
        response = self.transcripts.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakePerplexity:
    def __init__(self, answer="URL: https://example.org/paper\nTitle: A paper"):
        self.answer = answer
        self.calls: List[List[Dict[str, Any]]] = []

    def chat(self, messages, temperature=0.2):
        self.calls.append(messages)
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer


class FakeGemini:
    def __init__(self, answer):
        self.answer = answer
        self.prompts: List[str] = []

    def generate(self, prompt, temperature=0.2, max_output_tokens=8192):
        self.prompts.append(prompt)
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def index():
    return FakeIndex()


@pytest.fixture
def files(tmp_path):
    return LocalFileStore(root=str(tmp_path / "storage"), base_url="/files")


class FakeEncoding:
    """One token per whitespace-separated word; keeps tiktoken off the network."""

    def encode(self, text, disallowed_special=()):
        return text.split()


@pytest.fixture(autouse=True)
def word_tokenizer(monkeypatch):
    monkeypatch.setattr("src.vectorization.chunking._encoding", lambda: FakeEncoding())
