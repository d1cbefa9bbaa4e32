"""Conversion of a selected span into the returned answer."""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Union

import numpy as np

from .span import Span


logger = logging.getLogger(__name__)

NO_ANSWER_TEXT = "No answer extracted"


@dataclass(frozen=True)
class AnswerResult:
    """Extracted answer and its confidence score."""

    answer: str
    score: float

    @classmethod
    def no_answer(cls) -> 'AnswerResult':
        """The result reported when no usable span could be extracted."""
        return cls(answer=NO_ANSWER_TEXT, score=0.0)

    @property
    def is_sentinel(self) -> bool:
        return self.answer == NO_ANSWER_TEXT and self.score == 0.0

    def to_dict(self) -> Dict[str, Union[str, float]]:
        return {'answer': self.answer, 'score': self.score}


def span_score(start_logits: Sequence[float], end_logits: Sequence[float], span: Span) -> float:
    """Mean of the raw start logit at ``span.start`` and end logit at ``span.end``.

    Raw logits are used on the fallback path too, even though the fallback
    ranks candidates by softmax probability.
    """
    return (float(start_logits[span.start]) + float(end_logits[span.end])) / 2


def materialize(
    input_ids: Sequence[int],
    span: Optional[Span],
    decode: Callable[[Sequence[int]], str],
    start_logits: Union[Sequence[float], np.ndarray],
    end_logits: Union[Sequence[float], np.ndarray]
) -> AnswerResult:
    """Decode the span's tokens and score them.

    Args:
        input_ids: Encoded input the logits were computed for.
        span: Selected span, or None when selection failed.
        decode: Converts token ids to text with special tokens removed.
        start_logits: Raw start logits.
        end_logits: Raw end logits.

    Returns:
        The answer, or the sentinel result when the span is missing or empty
        or decodes to blank text.
    """
    if span is None:
        return AnswerResult.no_answer()

    answer_tokens = list(input_ids[span.start:span.end + 1])
    if not answer_tokens:
        logger.debug(f"Span {span} selects no tokens")
        return AnswerResult.no_answer()

    answer = decode(answer_tokens)
    if not answer or not answer.strip():
        logger.debug(f"Span {span} decodes to blank text")
        return AnswerResult.no_answer()

    return AnswerResult(answer=answer.strip(), score=span_score(start_logits, end_logits, span))
