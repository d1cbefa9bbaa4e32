"""PyTest configuration and fixtures for the test suite."""

import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Callable, Generator, List, Sequence, Tuple

import numpy as np
import yaml
from tokenizers import Tokenizer, decoders, models, normalizers, pre_tokenizers, processors
from transformers import PreTrainedTokenizerFast

# Import project modules
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from onnx_extractive_qa.models.pipeline import QAInferencePipeline
from onnx_extractive_qa.utils.cache import ResourceCache
from onnx_extractive_qa.utils.config import Config


SPECIAL_TOKENS = ["[PAD]", "[UNK]", "[CLS]", "[SEP]", "[MASK]"]

WORDS = [
    "The", "event", "will", "be", "held", "on", "November", "15", ",", "2024",
    "in", "Tokyo", ".", "When", "is", "the", "?", "Where", "What", "Paris",
    "capital", "of", "France", "city", "Who", "wrote", "it", "a", "and",
]

EVENT_CONTEXT = "The event will be held on November 15, 2024 in Tokyo."
EVENT_QUESTION = "When is the event held?"

LogitsFn = Callable[[List[int]], Tuple[np.ndarray, np.ndarray]]


def build_tokenizer() -> PreTrainedTokenizerFast:
    """Small cased WordPiece tokenizer with BERT-style pair template."""
    vocab = {token: index for index, token in enumerate(SPECIAL_TOKENS + WORDS)}

    backend = Tokenizer(models.WordPiece(vocab=vocab, unk_token="[UNK]"))
    backend.normalizer = normalizers.BertNormalizer(lowercase=False, strip_accents=False)
    backend.pre_tokenizer = pre_tokenizers.BertPreTokenizer()
    backend.post_processor = processors.TemplateProcessing(
        single="[CLS] $A [SEP]",
        pair="[CLS] $A [SEP] $B:1 [SEP]:1",
        special_tokens=[("[CLS]", vocab["[CLS]"]), ("[SEP]", vocab["[SEP]"])],
    )
    backend.decoder = decoders.WordPiece(prefix="##")

    return PreTrainedTokenizerFast(
        tokenizer_object=backend,
        unk_token="[UNK]",
        pad_token="[PAD]",
        cls_token="[CLS]",
        sep_token="[SEP]",
        mask_token="[MASK]",
        clean_up_tokenization_spaces=True,
    )


class FakeInput:
    def __init__(self, name: str) -> None:
        self.name = name


class FakeSession:
    """Stands in for ``onnxruntime.InferenceSession`` with scripted logits."""

    def __init__(
        self,
        logits_fn: LogitsFn,
        input_names: Sequence[str] = ("input_ids", "attention_mask")
    ) -> None:
        self.logits_fn = logits_fn
        self.input_names = list(input_names)
        self.calls = []

    def get_inputs(self):
        return [FakeInput(name) for name in self.input_names]

    def run(self, output_names, feeds):
        self.calls.append((list(output_names), feeds))
        start, end = self.logits_fn(feeds["input_ids"][0].tolist())
        return [
            np.asarray(start, dtype=np.float32)[np.newaxis, :],
            np.asarray(end, dtype=np.float32)[np.newaxis, :],
        ]


def span_logits(tokenizer, first_token: str, last_token: str,
                start_peak: float = 8.0, end_peak: float = 7.0) -> LogitsFn:
    """Logits peaking at the first occurrence of two tokens in the context."""
    first_id = tokenizer.convert_tokens_to_ids(first_token)
    last_id = tokenizer.convert_tokens_to_ids(last_token)
    sep_id = tokenizer.sep_token_id

    def logits_fn(input_ids: List[int]):
        context_start = input_ids.index(sep_id) + 1
        start = np.zeros(len(input_ids))
        end = np.zeros(len(input_ids))
        start[input_ids.index(first_id, context_start)] = start_peak
        end[input_ids.index(last_id, context_start)] = end_peak
        return start, end

    return logits_fn


def crossed_logits(input_ids: List[int]):
    """Start argmax after end argmax; the runner-up end follows the start."""
    length = len(input_ids)
    start = np.zeros(length)
    end = np.zeros(length)
    start[length - 4] = 6.0
    start[2] = 3.0
    end[3] = 6.0
    end[length - 2] = 5.0
    return start, end


@pytest.fixture(scope="session")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests.

    Yields:
        Path to temporary directory.
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture(scope="session")
def test_config(temp_dir: Path) -> Config:
    """Create test configuration.

    Args:
        temp_dir: Temporary directory for test files.

    Returns:
        Test configuration object.
    """
    config_data = {
        'model': {
            'name': 'test-tokenizer',
            'path': str(temp_dir / 'qa-model.onnx'),
            'max_seq_length': 64,  # Shorter for faster testing
        },
        'span': {
            'allow_single_token': False,
            'fallback_top_k': 5,
        },
        'engine': {
            'providers': ['CPUExecutionProvider'],
            'load_timeout': 10.0,
            'inference_timeout': 10.0,
        },
        'infrastructure': {
            'log_level': 'DEBUG',
        },
    }

    config_path = temp_dir / "test_config.yaml"
    with open(config_path, 'w') as f:
        yaml.dump(config_data, f)

    return Config(str(config_path))


@pytest.fixture(scope="session")
def qa_tokenizer() -> PreTrainedTokenizerFast:
    """Offline tokenizer shared by the tests."""
    return build_tokenizer()


@pytest.fixture
def cache() -> ResourceCache:
    """Fresh resource cache so tests never share loaded handles."""
    return ResourceCache()


@pytest.fixture
def make_pipeline(test_config: Config, qa_tokenizer, cache: ResourceCache):
    """Factory for pipelines backed by the offline tokenizer and a fake session.

    Returns:
        Callable taking a session (or session factory) and optional config.
    """
    def factory(session=None, config: Config = None, session_factory=None, tokenizer_loader=None):
        if session_factory is None:
            session_factory = lambda path: session
        return QAInferencePipeline(
            config or test_config,
            cache=cache,
            tokenizer_loader=tokenizer_loader or (lambda name: qa_tokenizer),
            session_factory=session_factory,
        )

    return factory


@pytest.fixture
def event_session(qa_tokenizer) -> FakeSession:
    """Session answering the event question with 'November 15, 2024'."""
    return FakeSession(span_logits(qa_tokenizer, "November", "2024"))
