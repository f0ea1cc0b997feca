"""
Knowledge base endpoints - per-agent documents for retrieval during calls

Supported formats: PDF, plain text, Markdown, JSON (max 20 MB).
"""

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_owned_agent
from app.config import settings
from app.db import AgentConfig, KnowledgeBaseDocument, get_db
from app.schemas import (
    KnowledgeBaseDocumentList, KnowledgeBaseDocumentResponse, KnowledgeBaseQueryRequest,
    KnowledgeBaseQueryResponse, KnowledgeBaseResult, KnowledgeBaseUploadResponse, SuccessResponse,
)
from app.services import knowledge_base_service
from app.services.knowledge_base_service import KnowledgeBaseNotConfigured, detect_document_type, document_name_for

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents/{agent_id}/knowledge-base", tags=["Knowledge Base"])


def _kb_service():
    try:
        return knowledge_base_service.get_knowledge_base_service()
    except KnowledgeBaseNotConfigured as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@router.post("/upload", response_model=KnowledgeBaseUploadResponse)
async def upload_document(
    file: UploadFile = File(...),
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    """
    Upload a document and index it into the agent's pipeline.

    The document row is created first and removed again if indexing fails.
    """
    content = await file.read()

    if len(content) > settings.kb_max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Maximum size is {settings.kb_max_upload_bytes // (1024 * 1024)} MB",
        )

    document_type = detect_document_type(file.filename, file.content_type)
    if not document_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid file type. Only PDF, TXT, MD, and JSON files are allowed.",
        )
    filename = document_name_for(file.filename, document_type)

    kb = _kb_service()

    document = KnowledgeBaseDocument(
        agent_config_id=agent.id,
        document_name=filename,
        document_type=document_type,
        file_size_bytes=len(content),
        chunk_count=0,
    )
    db.add(document)
    await db.commit()
    await db.refresh(document)

    try:
        chunk_count = await kb.index_document(content, filename, document_type, agent.id, document.id)
    except Exception as e:
        logger.error(f"[KB] Indexing {filename} failed for agent {agent.id}: {e!r}")
        await db.delete(document)
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to index document: {e}",
        )

    document.chunk_count = chunk_count
    await db.commit()

    return KnowledgeBaseUploadResponse(
        success=True,
        document_id=document.id,
        message=f"Document uploaded and indexed successfully ({chunk_count} chunks)",
    )


@router.get("/documents", response_model=KnowledgeBaseDocumentList)
async def list_documents(
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(KnowledgeBaseDocument)
        .where(KnowledgeBaseDocument.agent_config_id == agent.id)
        .order_by(KnowledgeBaseDocument.created_at.desc())
    )
    documents = result.scalars().all()
    return KnowledgeBaseDocumentList(
        documents=[KnowledgeBaseDocumentResponse.model_validate(d) for d in documents]
    )


@router.delete("/documents/{document_id}", response_model=SuccessResponse)
async def delete_document(
    document_id: str,
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    result = await db.execute(
        select(KnowledgeBaseDocument).where(
            KnowledgeBaseDocument.id == document_id,
            KnowledgeBaseDocument.agent_config_id == agent.id,
        )
    )
    document = result.scalar_one_or_none()
    if not document:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    try:
        kb = knowledge_base_service.get_knowledge_base_service()
        await kb.delete_document_embeddings(agent.id, document.id, document.document_name)
    except KnowledgeBaseNotConfigured:
        logger.warning(f"[KB] Retrieval backend not configured; deleting document {document.id} locally only")

    await db.delete(document)
    await db.commit()
    return SuccessResponse(success=True, message="Document deleted successfully")


@router.post("/query", response_model=KnowledgeBaseQueryResponse)
async def query_knowledge_base(
    request: KnowledgeBaseQueryRequest,
    agent: AgentConfig = Depends(get_owned_agent),
):
    """Retrieve the top-k chunks for a query (used by the dashboard and the voice worker)"""
    if not request.query.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query is required")

    try:
        kb = knowledge_base_service.get_knowledge_base_service()
    except KnowledgeBaseNotConfigured:
        logger.warning("[KB] Retrieval backend not configured; returning no results")
        return KnowledgeBaseQueryResponse(results=[])
    chunks = await kb.query(request.query, agent.id, request.top_k)
    return KnowledgeBaseQueryResponse(results=[
        KnowledgeBaseResult(text=c.text, score=c.score, metadata=c.metadata) for c in chunks
    ])
