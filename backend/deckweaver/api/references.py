from __future__ import annotations
"""Reference material builders for the topic form.

POST /api/references/search   search → citations + text bundle
POST /api/references/urls     fetch user URLs → citations + text bundle
POST /api/references/files    decoded text files → citations + text bundle
"""

from fastapi import APIRouter, Depends

from deckweaver.api.deps import get_orchestrator
from deckweaver.schemas.chat import DocumentImport, ReferenceBundle, ReferenceSearch, UrlImport
from deckweaver.services.retrieval import (
    RetrievalOrchestrator,
    document_citations,
    format_document_bundle,
    format_reference_bundle,
)
from deckweaver.services.tool_intent import INTERNET_TOOL, IntentSource, ToolIntent

router = APIRouter()


@router.post("/search", response_model=ReferenceBundle)
async def search_references(
    data: ReferenceSearch,
    orchestrator: RetrievalOrchestrator = Depends(get_orchestrator),
):
    """Run one search and fold the results into reference text."""
    intent = ToolIntent(tool=data.tool, query=data.query.strip(), source=IntentSource.NATIVE)
    citations = await orchestrator.gather(intent)
    label = "联网搜索报告" if data.tool == INTERNET_TOOL else "知识库检索"
    return ReferenceBundle(
        citations=citations,
        text=format_reference_bundle(f"{label}: {intent.query}", citations),
    )


@router.post("/urls", response_model=ReferenceBundle)
async def import_urls(
    data: UrlImport,
    orchestrator: RetrievalOrchestrator = Depends(get_orchestrator),
):
    """Fetch the given URLs; unreachable ones are left out."""
    citations = await orchestrator.import_urls(data.urls)
    return ReferenceBundle(citations=citations, text=format_reference_bundle("URL 引用集合", citations))


@router.post("/files", response_model=ReferenceBundle)
async def import_files(data: DocumentImport):
    """Quote uploaded .md/.txt/.csv/.json files verbatim as reference text."""
    return ReferenceBundle(
        citations=document_citations(data.documents),
        text=format_document_bundle(data.documents),
    )
