"""ONNX Runtime invocation of the question answering model."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import numpy as np
import onnxruntime as ort

from ..data.tokenization import TokenizedInput
from ..utils.cache import DEFAULT_CACHE, ResourceCache
from ..utils.config import Config
from ..utils.errors import InferenceError, InferenceTimeout


INPUT_NAMES = ('input_ids', 'attention_mask')
OUTPUT_NAMES = ['start_logits', 'end_logits']

GRAPH_OPTIMIZATION_LEVELS = {
    'disable': ort.GraphOptimizationLevel.ORT_DISABLE_ALL,
    'basic': ort.GraphOptimizationLevel.ORT_ENABLE_BASIC,
    'extended': ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED,
    'all': ort.GraphOptimizationLevel.ORT_ENABLE_ALL,
}


@dataclass
class ModelOutputs:
    """Start and end logits for one request, without the batch dimension."""

    start_logits: np.ndarray
    end_logits: np.ndarray

    def __len__(self) -> int:
        return int(self.start_logits.shape[0])


def create_session(
    model_path: str,
    providers: Optional[List[str]] = None,
    graph_optimization: str = 'all',
    intra_op_num_threads: Optional[int] = None
) -> ort.InferenceSession:
    """Create an ONNX Runtime session for ``model_path``.

    Requested execution providers that this onnxruntime build does not offer
    are skipped; the CPU provider is always appended as the last fallback.
    """
    logger = logging.getLogger(__name__)

    available_providers = ort.get_available_providers()
    selected = []
    for provider in providers or []:
        if provider in available_providers:
            selected.append(provider)
        else:
            logger.warning(f"Execution provider {provider} not available, skipping")
    if 'CPUExecutionProvider' not in selected:
        selected.append('CPUExecutionProvider')

    sess_options = ort.SessionOptions()
    sess_options.graph_optimization_level = GRAPH_OPTIMIZATION_LEVELS[graph_optimization]
    if intra_op_num_threads:
        sess_options.intra_op_num_threads = intra_op_num_threads

    logger.info(f"Creating ONNX Runtime session for {model_path} with providers {selected}")
    session = ort.InferenceSession(model_path, sess_options=sess_options, providers=selected)
    logger.info(f"Active providers: {session.get_providers()}")
    return session


class InferenceInvoker:
    """Runs start/end logit prediction for a tokenized pair.

    Sessions are created once per model path through the resource cache and
    executed in the default executor so the event loop is never blocked.
    """

    def __init__(
        self,
        cache: Optional[ResourceCache] = None,
        session_factory: Optional[Callable[[str], Any]] = None,
        providers: Optional[List[str]] = None,
        graph_optimization: str = 'all',
        intra_op_num_threads: Optional[int] = None,
        load_timeout: Optional[float] = None,
        inference_timeout: Optional[float] = None
    ) -> None:
        """Initialize the invoker.

        Args:
            cache: Resource cache. Defaults to the process-wide cache.
            session_factory: Callable creating a session from a model path.
                Defaults to ``create_session`` with the provider settings below.
            providers: Execution providers in priority order.
            graph_optimization: One of ``disable``, ``basic``, ``extended``, ``all``.
            intra_op_num_threads: Thread count for ONNX Runtime operators.
            load_timeout: Seconds allowed for creating a session.
            inference_timeout: Seconds allowed for a single model run.
        """
        self.logger = logging.getLogger(__name__)
        self.cache = cache if cache is not None else DEFAULT_CACHE
        self.providers = providers or ['CPUExecutionProvider']
        self.graph_optimization = graph_optimization
        self.intra_op_num_threads = intra_op_num_threads
        self.session_factory = session_factory or self._default_session_factory
        self.load_timeout = load_timeout
        self.inference_timeout = inference_timeout

    @classmethod
    def from_config(
        cls,
        config: Config,
        cache: Optional[ResourceCache] = None,
        session_factory: Optional[Callable[[str], Any]] = None
    ) -> 'InferenceInvoker':
        return cls(
            cache=cache,
            session_factory=session_factory,
            providers=config.get('engine.providers'),
            graph_optimization=config.get('engine.graph_optimization', 'all'),
            intra_op_num_threads=config.get('engine.intra_op_num_threads'),
            load_timeout=config.get('engine.load_timeout'),
            inference_timeout=config.get('engine.inference_timeout'),
        )

    def _default_session_factory(self, model_path: str) -> ort.InferenceSession:
        return create_session(
            model_path,
            providers=self.providers,
            graph_optimization=self.graph_optimization,
            intra_op_num_threads=self.intra_op_num_threads,
        )

    async def load_session(self, model_path: str) -> Any:
        """Return the session for ``model_path``, creating it once per process.

        Raises:
            InferenceError: If the model cannot be loaded.
            InferenceTimeout: If loading exceeds ``load_timeout``.
        """
        try:
            return await self.cache.get_or_load(
                ("session", model_path),
                lambda: self.session_factory(model_path),
                self.load_timeout
            )
        except asyncio.TimeoutError as e:
            raise InferenceTimeout(
                f"Loading model '{model_path}' timed out after {self.load_timeout}s"
            ) from e
        except Exception as e:
            raise InferenceError(f"Failed to load model '{model_path}': {e}") from e

    def _build_feeds(self, session: Any, tokenized: TokenizedInput) -> Dict[str, np.ndarray]:
        """Lay out the encoded pair as int64 tensors of shape [1, L]."""
        declared = {node.name for node in session.get_inputs()}
        missing = [name for name in INPUT_NAMES if name not in declared]
        if missing:
            raise InferenceError(f"Model does not declare required inputs {missing}; got {sorted(declared)}")

        feeds = {
            'input_ids': np.array([tokenized.input_ids], dtype=np.int64),
            'attention_mask': np.array([tokenized.attention_mask], dtype=np.int64),
        }
        if 'token_type_ids' in declared:
            token_type_ids = tokenized.token_type_ids or [0] * len(tokenized)
            feeds['token_type_ids'] = np.array([token_type_ids], dtype=np.int64)

        return feeds

    async def infer(self, tokenized: TokenizedInput, model_path: str) -> ModelOutputs:
        """Run the model on an encoded pair.

        Args:
            tokenized: Encoded (question, context) pair.
            model_path: Path of the ONNX model file.

        Returns:
            Start and end logits, each of length ``len(tokenized)``.

        Raises:
            InferenceError: If the model cannot be loaded, rejects the inputs
                or returns logits of the wrong shape.
            InferenceTimeout: If loading or execution exceeds its timeout.
        """
        seq_len = len(tokenized)
        if seq_len == 0:
            raise InferenceError("Cannot run the model on an empty input sequence")

        session = await self.load_session(model_path)
        feeds = self._build_feeds(session, tokenized)

        self.logger.debug(f"Running model {model_path} on sequence of length {seq_len}")
        loop = asyncio.get_running_loop()
        try:
            outputs = await asyncio.wait_for(
                loop.run_in_executor(None, session.run, OUTPUT_NAMES, feeds),
                self.inference_timeout
            )
        except asyncio.TimeoutError as e:
            raise InferenceTimeout(
                f"Model execution timed out after {self.inference_timeout}s"
            ) from e
        except Exception as e:
            raise InferenceError(f"Model execution failed: {e}") from e

        if len(outputs) != len(OUTPUT_NAMES):
            raise InferenceError(f"Expected {len(OUTPUT_NAMES)} outputs, got {len(outputs)}")

        start_logits, end_logits = (np.asarray(output) for output in outputs)
        for name, logits in zip(OUTPUT_NAMES, (start_logits, end_logits)):
            if logits.shape != (1, seq_len):
                raise InferenceError(
                    f"Output {name} has shape {logits.shape}, expected (1, {seq_len})"
                )

        return ModelOutputs(start_logits=start_logits[0], end_logits=end_logits[0])
