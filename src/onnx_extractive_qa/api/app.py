"""
Question answering service
FastAPI application exposing tokenization and extractive QA over ONNX Runtime
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from ..models.pipeline import QAInferencePipeline
from ..utils.config import Config
from ..utils.errors import InferenceTimeout, QAInferenceError, TokenizationError
from .schemas import AnswerRequest, AnswerResponse, HealthResponse, TokenizeRequest, TokenizeResponse

logger = logging.getLogger(__name__)


def _get_pipeline(request: Request) -> QAInferencePipeline:
    pipeline = getattr(request.app.state, 'pipeline', None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Service is starting up.")
    return pipeline


def create_app(pipeline: Optional[QAInferencePipeline] = None) -> FastAPI:
    """Build the application.

    Args:
        pipeline: Pipeline serving the requests. If None, one is built on
            startup from the file named by ``QA_CONFIG_PATH`` (or the default
            configuration).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager - builds the pipeline on startup"""
        if getattr(app.state, 'pipeline', None) is None:
            config_path = os.environ.get('QA_CONFIG_PATH')
            logger.info(f"Initializing QA pipeline (config: {config_path or 'default'})")
            app.state.pipeline = QAInferencePipeline(Config(config_path))

        if os.environ.get('PRELOAD_MODEL', 'false').lower() == 'true':
            active = app.state.pipeline
            await active.tokenization.load(active.model_id)
            await active.invoker.load_session(active.model_path)
            logger.info("Tokenizer and model preloaded")

        yield

        logger.info("Shutting down QA service...")

    app = FastAPI(
        title="ONNX Extractive QA Service",
        description="Extractive question answering with ONNX Runtime",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request):
        """Health check endpoint"""
        active = getattr(request.app.state, 'pipeline', None)
        if active is None:
            return HealthResponse(status="not_ready", model_loaded=False)

        model_loaded = active.invoker.cache.is_loaded(("session", active.model_path))
        return HealthResponse(
            status="healthy",
            model_loaded=model_loaded,
            providers=list(active.invoker.providers),
        )

    @app.post("/tokenize", response_model=TokenizeResponse)
    async def tokenize(body: TokenizeRequest, request: Request):
        """Tokenize a (question, context) pair with the configured tokenizer."""
        if not body.question or not body.context:
            raise HTTPException(status_code=400, detail="Missing question or context")

        active = _get_pipeline(request)
        try:
            tokenized = await active.tokenize(body.question, body.context)
        except (TokenizationError, InferenceTimeout) as e:
            logger.error(f"Tokenization error: {e}")
            raise HTTPException(status_code=500, detail="Internal server error")

        return TokenizeResponse(**tokenized.to_dict())

    @app.post("/answer", response_model=AnswerResponse)
    async def answer(body: AnswerRequest, request: Request):
        """Extract the answer to a question from a context passage."""
        if not body.question or not body.context:
            raise HTTPException(status_code=400, detail="Missing question or context")

        active = _get_pipeline(request)
        try:
            result = await active(body.question, body.context, max_length=body.max_length)
        except InferenceTimeout as e:
            logger.error(f"Inference timed out: {e}")
            raise HTTPException(status_code=503, detail=f"Inference timed out: {e}")
        except QAInferenceError as e:
            logger.error(f"Inference error: {e}")
            raise HTTPException(status_code=500, detail=f"Inference failed: {e}")

        return AnswerResponse(**result.to_dict())

    @app.get("/")
    async def root():
        """Root endpoint with service info"""
        return {
            "service": "ONNX Extractive QA",
            "version": "0.1.0",
            "docs": "/docs",
            "health": "/health",
        }

    return app
