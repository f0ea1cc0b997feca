"""
Knowledge base service - per-agent document RAG on LlamaCloud managed pipelines.

Each agent owns one pipeline named ``agent-<agentConfigId>``. Documents are
uploaded as files and attached to the pipeline with metadata; LlamaCloud
does parsing, chunking and embedding. Retrieval asks the pipeline for the
top-k chunks.

Usage:
    from app.services.knowledge_base_service import get_knowledge_base_service

    kb = get_knowledge_base_service()
    chunks = await kb.index_document(data, "faq.pdf", "pdf", agent_id, document_id)
    results = await kb.query("What are the opening hours?", agent_id, top_k=3)
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.services.cache import get_cache
from app.services.http_client import request_with_retry

logger = logging.getLogger(__name__)

# LlamaIndex default chunk size is ~1024 chars
CHUNK_SIZE_ESTIMATE = 1024

EXTENSION_TYPES = {
    ".pdf": "pdf",
    ".txt": "txt",
    ".md": "md",
    ".markdown": "md",
    ".json": "json",
}

MIME_TYPES = {
    "application/pdf": "pdf",
    "text/plain": "txt",
    "text/markdown": "md",
    "text/x-markdown": "md",
    "application/json": "json",
}


class KnowledgeBaseError(Exception):
    pass


class KnowledgeBaseNotConfigured(KnowledgeBaseError):
    pass


@dataclass
class RetrievedChunk:
    text: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


def pipeline_name(agent_config_id: str) -> str:
    return f"agent-{agent_config_id}"


def detect_document_type(filename: Optional[str], content_type: Optional[str] = None) -> Optional[str]:
    """Map an upload to pdf/txt/md/json by MIME type, then extension."""
    if content_type:
        doc_type = MIME_TYPES.get(content_type.split(";")[0].strip().lower())
        if doc_type:
            return doc_type
    lowered = (filename or "").lower()
    for ext, doc_type in EXTENSION_TYPES.items():
        if lowered.endswith(ext):
            return doc_type
    return None


def document_name_for(filename: Optional[str], document_type: str) -> str:
    """Name to store for an upload; multipart clients may send no filename."""
    name = (filename or "").strip()
    return name or f"upload.{document_type}"


def estimate_chunks(size_bytes: int) -> int:
    return max(1, math.ceil(size_bytes / CHUNK_SIZE_ESTIMATE))


def parse_retrieval_nodes(data: Dict[str, Any]) -> List[RetrievedChunk]:
    """Accept both ``{node: {text, extra_info}, score}`` and flat ``{text, score, metadata}`` nodes."""
    chunks = []
    for item in data.get("retrieval_nodes") or []:
        node = item.get("node") or item
        chunks.append(RetrievedChunk(
            text=node.get("text") or "",
            score=float(item.get("score") or 0),
            metadata=node.get("extra_info") or node.get("metadata") or {},
        ))
    return chunks


class KnowledgeBaseService:
    """LlamaCloud pipelines, files and retrieval."""

    def __init__(
        self,
        api_key: str,
        project_id: str,
        base_url: str = "https://api.cloud.llamaindex.ai",
        embedding_api_key: Optional[str] = None,
        embedding_model: str = "text-embedding-3-small",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.project_id = project_id
        self.base_url = base_url.rstrip("/")
        self.embedding_api_key = embedding_api_key
        self.embedding_model = embedding_model
        self._headers = {"Authorization": f"Bearer {api_key}", "Accept": "application/json"}
        self._transport = transport

    async def _request(self, method: str, path: str, what: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        async with httpx.AsyncClient(headers=self._headers, transport=self._transport) as client:
            response = await request_with_retry(method, url, client=client, label="LLAMACLOUD", **kwargs)
        if response.status_code >= 400:
            logger.error(f"[LLAMACLOUD] {what} failed: {response.status_code} {response.text[:500]}")
            raise KnowledgeBaseError(f"Failed to {what}: {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise KnowledgeBaseError(f"Failed to {what}: invalid JSON response") from e

    async def ensure_pipeline(self, agent_config_id: str) -> str:
        """Upsert the agent's pipeline and return its id (cached)."""
        name = pipeline_name(agent_config_id)
        cache_key = f"kb:pipeline:{agent_config_id}"
        cache = get_cache()
        cached = await cache.get(cache_key)
        if cached:
            return cached

        if not self.embedding_api_key:
            raise KnowledgeBaseNotConfigured("OPENAI_API_KEY is required for knowledge base embeddings")

        logger.info(f"[LLAMACLOUD] Getting/creating pipeline {name}")
        data = await self._request(
            "PUT",
            "/api/v1/pipelines",
            "create pipeline",
            params={"project_id": self.project_id},
            json={
                "name": name,
                "embedding_config": {
                    "type": "OPENAI_EMBEDDING",
                    "component": {
                        "model_name": self.embedding_model,
                        "api_key": self.embedding_api_key,
                    },
                },
                "transform_config": {"mode": "auto", "config_dict": {}},
            },
        )
        pipeline_id = data.get("id") if isinstance(data, dict) else None
        if not pipeline_id:
            raise KnowledgeBaseError("Failed to create/get pipeline - no ID returned")

        await cache.set(cache_key, pipeline_id)
        logger.info(f"[LLAMACLOUD] Pipeline ready: {name} ({pipeline_id})")
        return pipeline_id

    async def index_document(
        self,
        content: bytes,
        filename: str,
        document_type: str,
        agent_config_id: str,
        document_id: str,
    ) -> int:
        """Upload ``content`` and attach it to the agent's pipeline.

        Returns an estimated chunk count (ceil(bytes / 1024), at least 1).
        """
        logger.info(f"[LLAMACLOUD] Indexing {filename} ({document_type}, {len(content)} bytes) for agent {agent_config_id}")
        pipeline_id = await self.ensure_pipeline(agent_config_id)

        uploaded = await self._request(
            "POST",
            "/api/v1/files",
            "upload file",
            params={"project_id": self.project_id},
            files={"upload_file": (filename, content)},
        )
        file_id = uploaded.get("id") if isinstance(uploaded, dict) else None
        if not file_id:
            raise KnowledgeBaseError("Failed to upload file - no ID returned")

        await self._request(
            "PUT",
            f"/api/v1/pipelines/{pipeline_id}/files",
            "add file to pipeline",
            json=[{
                "file_id": file_id,
                "custom_metadata": {
                    "fileName": filename,
                    "fileType": document_type,
                    "documentId": document_id,
                    "agentConfigId": agent_config_id,
                    "uploadedAt": datetime.utcnow().isoformat(),
                },
            }],
        )

        chunks = estimate_chunks(len(content))
        logger.info(f"[LLAMACLOUD] Indexed {filename} into pipeline {pipeline_id} (~{chunks} chunks)")
        return chunks

    async def query(self, query: str, agent_config_id: str, top_k: int = 3) -> List[RetrievedChunk]:
        """Top-k chunks for ``query``. Failures are logged and yield an empty list."""
        try:
            pipeline_id = await self.ensure_pipeline(agent_config_id)
            data = await self._request(
                "POST",
                f"/api/v1/pipelines/{pipeline_id}/retrieve",
                "query knowledge base",
                json={"query": query, "similarity_top_k": top_k},
            )
        except Exception as e:
            logger.error(f"[LLAMACLOUD] Query failed for agent {agent_config_id}: {e}")
            return []

        results = parse_retrieval_nodes(data if isinstance(data, dict) else {})
        logger.info(f"[LLAMACLOUD] Found {len(results)} chunks for agent {agent_config_id}")
        return results

    async def delete_document_embeddings(self, agent_config_id: str, document_id: str, filename: str) -> None:
        # Files stay in the pipeline until removed from the LlamaCloud dashboard
        logger.warning(
            f"[LLAMACLOUD] Not removing {document_id}/{filename} from pipeline "
            f"{pipeline_name(agent_config_id)}; remove it from the LlamaCloud dashboard"
        )


_kb_service: Optional[KnowledgeBaseService] = None


def get_knowledge_base_service() -> KnowledgeBaseService:
    """Get or create the knowledge base service singleton."""
    global _kb_service
    if _kb_service is None:
        if not settings.llama_cloud_api_key or not settings.llama_cloud_project_id:
            raise KnowledgeBaseNotConfigured("LLAMA_CLOUD_API_KEY and LLAMA_CLOUD_PROJECT_ID are required")
        _kb_service = KnowledgeBaseService(
            api_key=settings.llama_cloud_api_key,
            project_id=settings.llama_cloud_project_id,
            base_url=settings.llama_cloud_base_url,
            embedding_api_key=settings.openai_api_key,
            embedding_model=settings.kb_embedding_model,
        )
    return _kb_service
