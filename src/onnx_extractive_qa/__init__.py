"""ONNX Extractive QA.

Extractive question answering that runs a pre-trained QA model through ONNX
Runtime: a question and a context passage go in, the best answer span and a
logit-based score come out.
"""

__version__ = "0.1.0"

from .models.answer import AnswerResult, NO_ANSWER_TEXT
from .models.pipeline import InferenceRequest, QAInferencePipeline, perform_qa_inference
from .utils.errors import InferenceError, InferenceTimeout, TokenizationError

__all__ = [
    "AnswerResult",
    "NO_ANSWER_TEXT",
    "InferenceRequest",
    "QAInferencePipeline",
    "perform_qa_inference",
    "InferenceError",
    "InferenceTimeout",
    "TokenizationError",
]
