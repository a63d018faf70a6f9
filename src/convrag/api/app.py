"""FastAPI application exposing the conversational retrieval pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass
from uuid import uuid4

import chromadb
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from convrag.api.schemas import (
    ChatRequest,
    ChatResponse,
    DocumentIngestionResponse,
    SourceDocumentModel,
    TextIngestionRequest,
)
from convrag.cache import CacheConfig, InMemoryKeyValueStore, KeyValueGenerationCache, SQLiteKeyValueStore
from convrag.config import Settings, get_settings
from convrag.embeddings import EmbeddingConfig, EmbeddingFunction, HashEmbeddings, HuggingFaceEmbeddingFunction
from convrag.errors import AmbiguousOutputError, MissingInputError, UpstreamCallError
from convrag.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from convrag.models import Document, Role, Turn
from convrag.retrieval import ChromaSimilarityIndex, InMemorySimilarityIndex, RetrievalConfig, VectorIndexRetriever
from convrag.retrieval.index import SimilarityIndex
from convrag.services.generation import (
    CachedLanguageModel,
    GenerationConfig,
    LanguageModel,
    TemplateLanguageModel,
    TransformersLanguageModel,
)
from convrag.services.pipeline import ConversationalRetrievalPipeline, PipelineConfig


@dataclass(frozen=True)
class AppDependencies:
    retriever: VectorIndexRetriever
    pipeline: ConversationalRetrievalPipeline


def _build_embeddings(settings: Settings) -> EmbeddingFunction:
    config = EmbeddingConfig(model=settings.embedding_model, dim=settings.embedding_dim, normalize=True)
    if settings.use_model_embeddings:
        return HuggingFaceEmbeddingFunction(config)
    return HashEmbeddings(config)


def _build_index(settings: Settings) -> SimilarityIndex:
    if settings.index_backend == "memory":
        return InMemorySimilarityIndex(dim=settings.embedding_dim)
    chroma_client = None
    if settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    return ChromaSimilarityIndex(
        settings.chroma_collection,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
    )


def _build_llm(settings: Settings) -> LanguageModel:
    llm: LanguageModel
    if settings.use_model_generator:
        llm = TransformersLanguageModel(
            GenerationConfig(
                model=settings.generator_model,
                max_new_tokens=settings.generator_max_new_tokens,
                temperature=settings.generator_temperature,
            ),
        )
    else:
        llm = TemplateLanguageModel()
    if not settings.cache_enabled:
        return llm
    store = (
        SQLiteKeyValueStore(settings.cache_path)
        if settings.cache_backend == "sqlite"
        else InMemoryKeyValueStore()
    )
    cache = KeyValueGenerationCache(store, CacheConfig(max_generations=settings.cache_max_generations))
    return CachedLanguageModel(llm, cache)


def _build_dependencies(settings: Settings) -> AppDependencies:
    retriever = VectorIndexRetriever(
        _build_index(settings),
        _build_embeddings(settings),
        RetrievalConfig(k=settings.retrieval_k),
    )
    pipeline = ConversationalRetrievalPipeline.from_llm(
        _build_llm(settings),
        retriever,
        config=PipelineConfig(
            question_key=settings.question_key,
            chat_history_key=settings.chat_history_key,
            return_source_documents=settings.return_source_documents,
        ),
    )
    return AppDependencies(retriever=retriever, pipeline=pipeline)


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or _build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")
    app = FastAPI(title="ConvRAG API", version="0.1.0")
    app.state.dependencies = deps

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    def _error_response(request: Request, status_code: int, event: str, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error(event, correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "correlation_id": correlation_id},
        )

    @app.exception_handler(MissingInputError)
    async def handle_missing_input(request: Request, exc: MissingInputError) -> JSONResponse:
        return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "pipeline.missing_input", exc)

    @app.exception_handler(AmbiguousOutputError)
    async def handle_ambiguous_output(request: Request, exc: AmbiguousOutputError) -> JSONResponse:
        return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "pipeline.ambiguous_output", exc)

    @app.exception_handler(UpstreamCallError)
    async def handle_upstream_error(request: Request, exc: UpstreamCallError) -> JSONResponse:
        return _error_response(request, status.HTTP_502_BAD_GATEWAY, "upstream.error", exc)

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_retriever(dep: AppDependencies = Depends(get_dependencies)) -> VectorIndexRetriever:
        return dep.retriever

    def get_pipeline(dep: AppDependencies = Depends(get_dependencies)) -> ConversationalRetrievalPipeline:
        return dep.pipeline

    @app.post("/documents/text", response_model=DocumentIngestionResponse, status_code=status.HTTP_201_CREATED)
    async def index_text(
        payload: TextIngestionRequest,
        retriever: VectorIndexRetriever = Depends(get_retriever),
        _auth: None = Depends(require_api_key),
    ) -> DocumentIngestionResponse:
        metadatas = payload.metadatas or [{} for _ in payload.texts]
        if len(metadatas) != len(payload.texts):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="metadatas must align with texts")
        documents = [
            Document(content=text.strip(), metadata=metadata)
            for text, metadata in zip(payload.texts, metadatas)
            if text and text.strip()
        ]
        if not documents:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No non-empty text provided")
        ids = await retriever.add_documents(documents)
        return DocumentIngestionResponse(ids=list(ids), count=len(ids))

    @app.post("/chat", response_model=ChatResponse)
    async def chat(
        payload: ChatRequest,
        pipeline: ConversationalRetrievalPipeline = Depends(get_pipeline),
        _auth: None = Depends(require_api_key),
    ) -> ChatResponse:
        history = payload.chat_history
        if isinstance(history, list) and history and not isinstance(history[0], str):
            history = [Turn(role=Role(turn.role), content=turn.content) for turn in history]
        start = time.perf_counter()
        result = await pipeline.ainvoke(
            {
                pipeline.config.question_key: payload.question,
                pipeline.config.chat_history_key: history,
            },
        )
        latency_ms = (time.perf_counter() - start) * 1000
        sources = result.get(pipeline.config.source_documents_key, [])
        answer_key = next(key for key in pipeline.output_keys if key != pipeline.config.source_documents_key)
        return ChatResponse(
            answer=str(result[answer_key]),
            source_documents=[
                SourceDocumentModel(content=document.content, metadata=dict(document.metadata))
                for document in sources
            ],
            latency_ms=latency_ms,
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from convrag import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    return app


app = create_app()
