"""Selection of the answer span from start/end logits.

The primary rule takes the independent argmax of the start and end logits.
Independent argmaxes can cross (end before start) or collapse onto one token,
so an invalid primary span falls back to the most probable locally consistent
span among the top-k start and top-k end candidates.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np


logger = logging.getLogger(__name__)

FALLBACK_TOP_K = 5


@dataclass(frozen=True)
class Span:
    """Inclusive token index range of a predicted answer."""

    start: int
    end: int
    from_fallback: bool = False

    def __len__(self) -> int:
        return max(0, self.end - self.start + 1)


def softmax(logits: Sequence[float]) -> np.ndarray:
    """Numerically stable softmax over a 1-D logit vector."""
    values = np.asarray(logits, dtype=np.float64)
    shifted = np.exp(values - np.max(values))
    return shifted / np.sum(shifted)


def top_k_indices(probs: np.ndarray, k: int) -> List[int]:
    """Indices of the ``k`` largest probabilities, ties kept in index order."""
    order = np.argsort(-probs, kind='stable')
    return [int(index) for index in order[:k]]


def is_valid_span(start: int, end: int, seq_len: int, allow_single_token: bool = False) -> bool:
    """Whether ``start``/``end`` form an answer span within a sequence of ``seq_len`` tokens."""
    if not (0 <= start < seq_len and 0 <= end < seq_len):
        return False
    return start <= end if allow_single_token else start < end


def select_span(
    start_logits: Sequence[float],
    end_logits: Sequence[float],
    seq_len: int,
    allow_single_token: bool = False,
    top_k: int = FALLBACK_TOP_K
) -> Optional[Span]:
    """Pick the answer span for one sequence.

    Args:
        start_logits: Start logit per token position.
        end_logits: End logit per token position.
        seq_len: Length of the encoded input.
        allow_single_token: Accept ``start == end`` on the primary path.
        top_k: Number of start and end candidates considered by the fallback.

    Returns:
        The selected span, or None when neither the primary argmax pair nor
        any top-k fallback pair is usable.
    """
    start_logits = np.asarray(start_logits)
    end_logits = np.asarray(end_logits)
    if seq_len <= 0 or start_logits.size == 0 or end_logits.size == 0:
        return None

    # np.argmax returns the first occurrence on ties.
    start = int(np.argmax(start_logits))
    end = int(np.argmax(end_logits))
    if is_valid_span(start, end, seq_len, allow_single_token):
        return Span(start=start, end=end)

    start_probs = softmax(start_logits)
    end_probs = softmax(end_logits)
    top_starts = top_k_indices(start_probs, top_k)
    top_ends = top_k_indices(end_probs, top_k)

    logger.debug(
        f"Primary span ({start}, {end}) invalid for length {seq_len}; "
        f"top starts {[(i, float(start_probs[i])) for i in top_starts]}, "
        f"top ends {[(i, float(end_probs[i])) for i in top_ends]}"
    )

    valid_starts = [index for index in top_starts if index < seq_len]
    if not valid_starts:
        return None
    fallback_start = valid_starts[0]

    valid_ends = [index for index in top_ends if fallback_start < index < seq_len]
    if not valid_ends:
        logger.debug(f"No end candidate after start {fallback_start}")
        return None

    return Span(start=fallback_start, end=valid_ends[0], from_fallback=True)
