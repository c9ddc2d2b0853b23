import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from plagiarism_detection.errors import ValidationError
from plagiarism_detection.loader import load_documents, load_stopwords
from plagiarism_detection.models import DetectionConfig, Document, IngestionResult
from plagiarism_detection.persistence import make_snapshot_store
from plagiarism_detection.service import PlagiarismDetectionService

DEFAULT_DATASET = os.environ.get("PLAGIARISM_DATASET")
DEFAULT_STORE_URL = os.environ.get("PLAGIARISM_STORE_URL", "sqlite:///plagiarism_index.db")
DEFAULT_STOPWORDS = os.environ.get("PLAGIARISM_STOPWORDS")
DEFAULT_AUTOSAVE_INTERVAL = float(os.environ.get("PLAGIARISM_AUTOSAVE_INTERVAL", "0"))
DEFAULT_SAVE_ON_MUTATION = os.environ.get("PLAGIARISM_SAVE_ON_MUTATION", "0") == "1"
DEFAULT_MAX_TEXT_LENGTH = int(os.environ.get("PLAGIARISM_MAX_TEXT_LENGTH", "200000"))
DEFAULT_TIME_BUDGET_MS = os.environ.get("PLAGIARISM_TIME_BUDGET_MS")


class DocumentRequest(BaseModel):
    doc_id: str
    text: str
    title: Optional[str] = None


class BatchRequest(BaseModel):
    documents: List[DocumentRequest]


class IngestionResponse(BaseModel):
    doc_id: str
    success: bool
    sentence_count: int
    unique_token_count: int
    state: str
    error: Optional[str] = None


class CheckRequest(BaseModel):
    text: str
    min_similarity: Optional[float] = Field(default=None, ge=0, le=100)
    chunk_size: Optional[int] = Field(default=None, ge=1)
    max_results: Optional[int] = Field(default=None, ge=1)
    time_budget_ms: Optional[float] = Field(default=None, ge=0)


class MatchResponse(BaseModel):
    query_index: int
    doc_id: str
    source_sentence_index: int
    similarity: float
    method: str
    query_text: str
    source_text: str


class DocumentBreakdown(BaseModel):
    doc_id: str
    title: Optional[str]
    duplicate_rate: float
    matched_sentences: int
    total_sentences_in_source: int


class MostSimilarResponse(BaseModel):
    doc_id: str
    title: Optional[str]
    similarity: float


class ReportResponse(BaseModel):
    duplicate_percentage: float
    status: str
    confidence: str
    matches: List[MatchResponse]
    documents: List[DocumentBreakdown]
    sources: List[str]
    total_documents_checked: int
    total_input_sentences: int
    total_duplicated_sentences: int
    dtotal: float
    dab: float
    most_similar_document: Optional[MostSimilarResponse] = None
    partial: bool


class ThresholdUpdate(BaseModel):
    updated_by: str
    notes: Optional[str] = None
    sentence_threshold: Optional[float] = None
    high_duplication_threshold: Optional[float] = None
    medium_duplication_threshold: Optional[float] = None
    document_comparison_threshold: Optional[float] = None


class ThresholdResponse(BaseModel):
    sentence_threshold: float
    high_duplication_threshold: float
    medium_duplication_threshold: float
    document_comparison_threshold: float
    version: int
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    notes: Optional[str] = None


def build_service_from_env() -> PlagiarismDetectionService:
    config = DetectionConfig(
        max_text_length=DEFAULT_MAX_TEXT_LENGTH,
        autosave_interval=DEFAULT_AUTOSAVE_INTERVAL,
        save_on_mutation=DEFAULT_SAVE_ON_MUTATION,
        time_budget_ms=float(DEFAULT_TIME_BUDGET_MS) if DEFAULT_TIME_BUDGET_MS else None,
    )
    stopwords = load_stopwords(Path(DEFAULT_STOPWORDS)) if DEFAULT_STOPWORDS else None
    documents = load_documents(Path(DEFAULT_DATASET)) if DEFAULT_DATASET else []
    return PlagiarismDetectionService(
        documents,
        config=config,
        stopwords=stopwords,
        store=make_snapshot_store(DEFAULT_STORE_URL),
    )


def get_service(request: Request) -> PlagiarismDetectionService:
    service = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Service not initialised")
    return service


def _ingestion_response(result: IngestionResult) -> IngestionResponse:
    return IngestionResponse(
        doc_id=result.doc_id,
        success=result.success,
        sentence_count=result.sentence_count,
        unique_token_count=result.unique_token_count,
        state=result.state.value,
        error=result.error,
    )


def create_app(service: Optional[PlagiarismDetectionService] = None) -> FastAPI:
    app = FastAPI(title="Plagiarism Detection Service")
    app.state.service = service

    @app.on_event("startup")
    async def startup_event() -> None:
        if app.state.service is None:
            app.state.service = build_service_from_env()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        if app.state.service is not None:
            app.state.service.shutdown()
            logging.info("Plagiarism service stopped")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "initialized": app.state.service is not None}

    @app.post("/documents", response_model=IngestionResponse)
    def add_document(
        req: DocumentRequest, service: PlagiarismDetectionService = Depends(get_service)
    ) -> IngestionResponse:
        result = service.add_document_to_tree(
            Document(doc_id=req.doc_id, title=req.title, text=req.text)
        )
        return _ingestion_response(result)

    @app.post("/documents/batch", response_model=List[IngestionResponse])
    def add_documents(
        req: BatchRequest, service: PlagiarismDetectionService = Depends(get_service)
    ) -> List[IngestionResponse]:
        results = service.add_documents(
            Document(doc_id=d.doc_id, title=d.title, text=d.text) for d in req.documents
        )
        return [_ingestion_response(result) for result in results]

    @app.delete("/documents/{doc_id}")
    def remove_document(
        doc_id: str, service: PlagiarismDetectionService = Depends(get_service)
    ) -> dict:
        result = service.remove_document_from_tree(doc_id)
        if not result.success:
            raise HTTPException(status_code=404, detail=f"Document {doc_id} is not indexed")
        return {"doc_id": doc_id, "removed_postings": result.removed_postings}

    @app.post("/index/save")
    def save_index(service: PlagiarismDetectionService = Depends(get_service)) -> dict:
        result = service.force_save()
        if not result.success:
            raise HTTPException(status_code=500, detail=result.error)
        return {"status": "saved", "saved_at": result.saved_at}

    @app.get("/index/stats")
    def index_stats(service: PlagiarismDetectionService = Depends(get_service)) -> dict:
        stats = service.get_tree_stats()
        save_status = service.get_save_status()
        return {
            "total_documents": stats.total_documents,
            "total_tokens": stats.total_tokens,
            "total_sentences": stats.total_sentences,
            "tree_height": stats.tree_height,
            "memory_usage": stats.memory_usage,
            "initialized": stats.initialized,
            "last_saved": stats.last_saved,
            "autosave": save_status.autosave,
            "dirty": save_status.dirty,
            "cache": service.cache_stats(),
        }

    @app.post("/plagiarism/check", response_model=ReportResponse)
    def check(
        req: CheckRequest, service: PlagiarismDetectionService = Depends(get_service)
    ) -> ReportResponse:
        try:
            report = service.check_plagiarism(
                req.text,
                min_similarity=req.min_similarity,
                chunk_size=req.chunk_size,
                max_results=req.max_results,
                time_budget_ms=req.time_budget_ms,
            )
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        most_similar = report.most_similar_document
        return ReportResponse(
            duplicate_percentage=report.duplicate_percentage,
            status=report.status,
            confidence=report.confidence,
            matches=[MatchResponse(**vars(m)) for m in report.matches],
            documents=[
                DocumentBreakdown(
                    doc_id=d.doc_id,
                    title=d.title,
                    duplicate_rate=d.duplicate_rate,
                    matched_sentences=d.matched_sentences,
                    total_sentences_in_source=d.total_sentences_in_source,
                )
                for d in report.documents
            ],
            sources=report.sources,
            total_documents_checked=report.total_documents_checked,
            total_input_sentences=report.total_input_sentences,
            total_duplicated_sentences=report.total_duplicated_sentences,
            dtotal=report.dtotal,
            dab=report.dab,
            most_similar_document=MostSimilarResponse(**vars(most_similar))
            if most_similar
            else None,
            partial=report.partial,
        )

    @app.get("/thresholds", response_model=ThresholdResponse)
    def get_thresholds(
        service: PlagiarismDetectionService = Depends(get_service),
    ) -> ThresholdResponse:
        return ThresholdResponse(**service.get_thresholds().to_dict())

    @app.put("/thresholds", response_model=ThresholdResponse)
    def put_thresholds(
        req: ThresholdUpdate, service: PlagiarismDetectionService = Depends(get_service)
    ) -> ThresholdResponse:
        values = {
            key: value
            for key, value in req.model_dump(exclude={"updated_by", "notes"}).items()
            if value is not None
        }
        try:
            updated = service.update_thresholds(req.updated_by, notes=req.notes, **values)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return ThresholdResponse(**updated.to_dict())

    return app


app = create_app()
