"""End-to-end extractive question answering over an ONNX model.

A request runs through four stages: the tokenization adapter encodes the
(question, context) pair, the inference invoker obtains start/end logits from
ONNX Runtime, the span selector picks a single answer span and the answer
materializer decodes and scores it. Tokenizer and model handles are shared
across requests through the resource cache; nothing else outlives a request.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..data.tokenization import TokenizationAdapter, TokenizerLoader, TokenizedInput
from ..utils.cache import ResourceCache
from ..utils.config import Config
from ..utils.errors import QAInferenceError
from .answer import AnswerResult, materialize
from .engine import InferenceInvoker
from .span import select_span


@dataclass(frozen=True)
class InferenceRequest:
    """A single question answering call."""

    question: str
    context: str
    model_id: str
    model_path: str
    max_length: int = 512


class QAInferencePipeline:
    """Answers questions from a context passage with an extractive QA model."""

    def __init__(
        self,
        config: Optional[Config] = None,
        cache: Optional[ResourceCache] = None,
        tokenizer_loader: Optional[TokenizerLoader] = None,
        session_factory: Optional[Callable[[str], Any]] = None
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Configuration object. If None, loads the default configuration.
            cache: Resource cache for tokenizers and sessions. If None, the
                process-wide cache is used.
            tokenizer_loader: Overrides ``AutoTokenizer.from_pretrained``.
            session_factory: Overrides ONNX Runtime session creation.
        """
        self.config = config if config is not None else Config()
        self.logger = logging.getLogger(__name__)

        self.tokenization = TokenizationAdapter(
            cache=cache,
            loader=tokenizer_loader,
            load_timeout=self.config.get('engine.load_timeout'),
        )
        self.invoker = InferenceInvoker.from_config(
            self.config,
            cache=cache,
            session_factory=session_factory,
        )

        self.model_id = self.config.get('model.name')
        self.model_path = self.config.get('model.path')
        self.max_length = self.config.get('model.max_seq_length', 512)
        self.allow_single_token = bool(self.config.get('span.allow_single_token', False))
        self.fallback_top_k = self.config.get('span.fallback_top_k', 5)

    def build_request(
        self,
        question: str,
        context: str,
        model_path: Optional[str] = None,
        model_name: Optional[str] = None,
        max_length: Optional[int] = None
    ) -> InferenceRequest:
        """Fill unspecified request fields from the configuration.

        Raises:
            ValueError: If ``max_length`` is not a positive integer.
        """
        max_length = max_length if max_length is not None else self.max_length
        if max_length <= 0:
            raise ValueError(f"max_length must be positive, got {max_length}")

        return InferenceRequest(
            question=question or "",
            context=context or "",
            model_id=model_name or self.model_id,
            model_path=model_path or self.model_path,
            max_length=max_length,
        )

    async def tokenize(self, question: str, context: str, max_length: Optional[int] = None) -> TokenizedInput:
        """Encode a pair with the configured tokenizer."""
        request = self.build_request(question, context, max_length=max_length)
        return await self.tokenization.tokenize(
            request.question,
            request.context,
            request.max_length,
            request.model_id,
            options=self.config.tokenizer_options(request.max_length),
        )

    async def answer(self, request: InferenceRequest) -> AnswerResult:
        """Extract the answer to ``request.question`` from ``request.context``.

        Returns:
            The answer and its score, or the sentinel result when no usable
            span exists.

        Raises:
            TokenizationError: If the tokenizer cannot be loaded or encoding fails.
            InferenceError: If the model cannot be loaded or run, including timeouts.
        """
        options = self.config.tokenizer_options(request.max_length)

        try:
            tokenizer = await self.tokenization.load(request.model_id)
            tokenized = self.tokenization.encode(tokenizer, request.question, request.context, options)

            if tokenized.context_length == 0:
                self.logger.info("No context tokens to extract from, returning no answer")
                return AnswerResult.no_answer()

            outputs = await self.invoker.infer(tokenized, request.model_path)
        except QAInferenceError as e:
            self.logger.error(f"QA inference failed: {e}")
            raise

        span = select_span(
            outputs.start_logits,
            outputs.end_logits,
            len(tokenized),
            allow_single_token=self.allow_single_token,
            top_k=self.fallback_top_k,
        )
        result = materialize(
            tokenized.input_ids,
            span,
            lambda token_ids: self.tokenization.decode(tokenizer, token_ids, options),
            outputs.start_logits,
            outputs.end_logits,
        )

        if result.is_sentinel:
            self.logger.info(f"Could not extract an answer (span={span})")
        else:
            self.logger.info(
                f"Extracted answer {result.answer!r} with score {result.score:.4f} "
                f"(span={span.start}-{span.end}, fallback={span.from_fallback})"
            )
        return result

    async def __call__(
        self,
        question: str,
        context: str,
        model_path: Optional[str] = None,
        model_name: Optional[str] = None,
        max_length: Optional[int] = None
    ) -> AnswerResult:
        request = self.build_request(question, context, model_path, model_name, max_length)
        return await self.answer(request)


_default_pipeline: Optional[QAInferencePipeline] = None
_default_pipeline_lock = threading.Lock()


def get_default_pipeline() -> QAInferencePipeline:
    """Pipeline built from the default configuration, created on first use."""
    global _default_pipeline
    with _default_pipeline_lock:
        if _default_pipeline is None:
            _default_pipeline = QAInferencePipeline()
        return _default_pipeline


async def perform_qa_inference(
    question: str,
    context: str,
    model_path: Optional[str] = None,
    model_name: Optional[str] = None,
    max_length: Optional[int] = None
) -> AnswerResult:
    """Answer ``question`` from ``context``.

    Args:
        question: Question text.
        context: Passage to extract the answer from.
        model_path: ONNX model file. Defaults to ``model.path`` in the configuration.
        model_name: Tokenizer identifier. Defaults to ``model.name``.
        max_length: Maximum encoded length. Defaults to ``model.max_seq_length``.

    Returns:
        The extracted answer, or the sentinel result when none is found.
    """
    pipeline = get_default_pipeline()
    return await pipeline(question, context, model_path, model_name, max_length)
