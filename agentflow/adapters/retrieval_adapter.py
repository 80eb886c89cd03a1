"""
Retrieval Adapter - Abstract interface and implementations for knowledge search.

This module provides:
- Abstract RetrievalAdapter interface
- LocalRetrievalAdapter using SQLite for local development/testing
"""
import hashlib
import json
import re
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import structlog

from ..config import RetrievalConfig
from ..errors import RetrievalError

logger = structlog.get_logger()

TOKEN_PATTERN = re.compile(r"\w+")


@dataclass
class RetrievalHit:
    """Result from a knowledge base search."""

    text: str
    source: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "source": self.source,
            "similarity": self.similarity,
            "metadata": self.metadata,
        }


@dataclass
class KnowledgeChunk:
    """A chunk of text stored in a knowledge base."""

    id: str
    content: str
    source: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


class RetrievalAdapter(ABC):
    """
    Abstract base class for retrieval providers.

    Searches are read-only and independent, so callers may run several
    concurrently.
    """

    @abstractmethod
    async def search(
        self,
        knowledge_base_id: str,
        query: str,
        limit: int = 3,
        threshold: float = 0.7,
    ) -> list[RetrievalHit]:
        """
        Search one knowledge base.

        Args:
            knowledge_base_id: Knowledge base to search
            query: Query text
            limit: Maximum number of hits
            threshold: Minimum similarity (0-1)

        Returns:
            Hits sorted by similarity, best first

        Raises:
            RetrievalError: the search could not be performed
        """
        pass


class LocalRetrievalAdapter(RetrievalAdapter):
    """
    Local SQLite-based knowledge store for development and testing.

    Uses hashed bag-of-words embeddings, so texts sharing words score
    higher. In production, use a real embedding model.
    """

    def __init__(self, db_path: str = "./data/knowledge.db", dim: int = 256):
        self.db_path = db_path
        self.dim = dim
        self._ensure_db()

    def _ensure_db(self) -> None:
        """Create database and tables if they don't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id TEXT NOT NULL,
                knowledge_base_id TEXT NOT NULL,
                content TEXT NOT NULL,
                source TEXT NOT NULL,
                metadata TEXT NOT NULL,
                embedding TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (knowledge_base_id, id)
            )
        """)

        conn.commit()
        conn.close()

    def _generate_embedding(self, text: str) -> np.ndarray:
        """Hash each token into a fixed-size vector and normalize."""
        embedding = np.zeros(self.dim)
        for token in TOKEN_PATTERN.findall(text.lower()):
            digest = hashlib.sha256(token.encode()).digest()
            embedding[int.from_bytes(digest[:4], "big") % self.dim] += 1.0

        norm = np.linalg.norm(embedding)
        if norm > 0:
            embedding = embedding / norm
        return embedding

    def _cosine_similarity(self, a: np.ndarray, b: np.ndarray) -> float:
        norm_a = np.linalg.norm(a)
        norm_b = np.linalg.norm(b)

        if norm_a == 0 or norm_b == 0:
            return 0.0

        return float(np.dot(a, b) / (norm_a * norm_b))

    async def upsert(self, knowledge_base_id: str, chunks: list[KnowledgeChunk]) -> int:
        """Insert or update chunks of a knowledge base."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        count = 0
        for chunk in chunks:
            embedding = self._generate_embedding(chunk.content)
            cursor.execute(
                """
                INSERT OR REPLACE INTO chunks
                    (id, knowledge_base_id, content, source, metadata, embedding)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    chunk.id,
                    knowledge_base_id,
                    chunk.content,
                    chunk.source,
                    json.dumps(chunk.metadata),
                    json.dumps(embedding.tolist()),
                ),
            )
            count += 1

        conn.commit()
        conn.close()

        logger.debug("upserted_chunks", knowledge_base_id=knowledge_base_id, count=count)
        return count

    async def search(
        self,
        knowledge_base_id: str,
        query: str,
        limit: int = 3,
        threshold: float = 0.7,
    ) -> list[RetrievalHit]:
        """Search a knowledge base using cosine similarity."""
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                rows = conn.execute(
                    """
                    SELECT content, source, metadata, embedding FROM chunks
                    WHERE knowledge_base_id = ?
                    """,
                    (knowledge_base_id,),
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise RetrievalError(f"Knowledge base {knowledge_base_id} unavailable: {e}")

        query_embedding = self._generate_embedding(query)

        hits: list[RetrievalHit] = []
        for content, source, metadata_str, embedding_str in rows:
            score = self._cosine_similarity(query_embedding, np.array(json.loads(embedding_str)))
            if score < threshold:
                continue

            metadata = json.loads(metadata_str)
            metadata["knowledge_base_id"] = knowledge_base_id
            hits.append(
                RetrievalHit(text=content, source=source, similarity=score, metadata=metadata)
            )

        hits.sort(key=lambda hit: hit.similarity, reverse=True)

        logger.debug(
            "knowledge_search",
            knowledge_base_id=knowledge_base_id,
            candidates=len(rows),
            hits=len(hits),
        )
        return hits[:limit]

    async def delete_knowledge_base(self, knowledge_base_id: str) -> int:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("DELETE FROM chunks WHERE knowledge_base_id = ?", (knowledge_base_id,))
        count = cursor.rowcount
        conn.commit()
        conn.close()
        return count


def create_retrieval_adapter(config: RetrievalConfig) -> RetrievalAdapter:
    """
    Factory function to create a retrieval adapter.

    Args:
        config: Retrieval configuration

    Returns:
        Configured RetrievalAdapter instance
    """
    if config.provider == "local":
        return LocalRetrievalAdapter(config.db_path)

    logger.warning(f"Unknown retrieval provider: {config.provider}, using local")
    return LocalRetrievalAdapter(config.db_path)
