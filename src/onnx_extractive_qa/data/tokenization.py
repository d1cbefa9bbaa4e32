"""Tokenization of (question, context) pairs for the QA model."""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence, Union

from transformers import AutoTokenizer, PreTrainedTokenizerBase

from ..utils.cache import DEFAULT_CACHE, ResourceCache
from ..utils.errors import InferenceTimeout, TokenizationError


@dataclass(frozen=True)
class TokenizerOptions:
    """Options passed to the tokenizer when encoding and decoding.

    Attributes:
        padding: Pad the encoded pair. Pads to the longest sequence unless
            ``pad_to_max_length`` is set, in which case every encoding is
            exactly ``max_length`` long.
        pad_to_max_length: Pad to ``max_length`` instead of to the longest sequence.
        truncation: Truncate the pair so it fits into ``max_length``.
        truncation_strategy: Which side loses tokens first: ``longest_first``,
            ``only_first`` (question) or ``only_second`` (context).
        max_length: Upper bound on the encoded length.
        skip_special_tokens: Drop special tokens when decoding.
    """

    padding: bool = True
    pad_to_max_length: bool = False
    truncation: bool = True
    truncation_strategy: str = "longest_first"
    max_length: int = 512
    skip_special_tokens: bool = True

    @property
    def padding_strategy(self) -> Union[bool, str]:
        if not self.padding:
            return False
        return "max_length" if self.pad_to_max_length else "longest"

    @property
    def truncation_mode(self) -> Union[bool, str]:
        return self.truncation_strategy if self.truncation else False


@dataclass
class TokenizedInput:
    """Encoded (question, context) pair.

    ``input_ids`` and ``attention_mask`` always have the same length, which
    never exceeds the requested maximum. ``context_length`` counts the context
    tokens that survived truncation.
    """

    input_ids: List[int]
    attention_mask: List[int]
    token_type_ids: Optional[List[int]] = None
    context_length: int = 0

    def __post_init__(self) -> None:
        if len(self.input_ids) != len(self.attention_mask):
            raise ValueError(
                f"input_ids and attention_mask length mismatch: "
                f"{len(self.input_ids)} vs {len(self.attention_mask)}"
            )

    def __len__(self) -> int:
        return len(self.input_ids)

    def to_dict(self) -> dict:
        return {
            'input_ids': list(self.input_ids),
            'attention_mask': list(self.attention_mask),
        }


TokenizerLoader = Callable[[str], PreTrainedTokenizerBase]


class TokenizationAdapter:
    """Loads tokenizers through the resource cache and encodes QA inputs."""

    def __init__(
        self,
        cache: Optional[ResourceCache] = None,
        loader: Optional[TokenizerLoader] = None,
        load_timeout: Optional[float] = None
    ) -> None:
        """Initialize the adapter.

        Args:
            cache: Resource cache. Defaults to the process-wide cache.
            loader: Callable building a tokenizer from a model identifier.
                Defaults to ``AutoTokenizer.from_pretrained``.
            load_timeout: Seconds allowed for loading a tokenizer.
        """
        self.logger = logging.getLogger(__name__)
        self.cache = cache if cache is not None else DEFAULT_CACHE
        self.loader = loader if loader is not None else AutoTokenizer.from_pretrained
        self.load_timeout = load_timeout

    async def load(self, model_id: str) -> PreTrainedTokenizerBase:
        """Return the tokenizer for ``model_id``, loading it once per process.

        Raises:
            TokenizationError: If the tokenizer cannot be loaded.
            InferenceTimeout: If loading exceeds ``load_timeout``.
        """
        try:
            return await self.cache.get_or_load(
                ("tokenizer", model_id),
                lambda: self.loader(model_id),
                self.load_timeout
            )
        except asyncio.TimeoutError as e:
            raise InferenceTimeout(
                f"Loading tokenizer '{model_id}' timed out after {self.load_timeout}s"
            ) from e
        except Exception as e:
            raise TokenizationError(f"Failed to load tokenizer '{model_id}': {e}") from e

    def encode(
        self,
        tokenizer: PreTrainedTokenizerBase,
        question: str,
        context: str,
        options: TokenizerOptions
    ) -> TokenizedInput:
        """Encode a (question, context) pair.

        When ``max_length`` leaves no room for a single token besides the
        pair's special tokens, an empty input is returned without calling the
        tokenizer.

        Raises:
            TokenizationError: If the tokenizer rejects the input or the
                encoding exceeds ``max_length`` with truncation disabled.
        """
        special_tokens = tokenizer.num_special_tokens_to_add(pair=True)
        if options.max_length <= special_tokens:
            self.logger.warning(
                f"max_length={options.max_length} cannot hold {special_tokens} special tokens "
                f"and any context; returning an empty encoding"
            )
            return TokenizedInput(input_ids=[], attention_mask=[], context_length=0)

        try:
            encoding = tokenizer(
                question,
                context,
                padding=options.padding_strategy,
                truncation=options.truncation_mode,
                max_length=options.max_length,
            )
        except Exception as e:
            raise TokenizationError(f"Failed to encode question/context pair: {e}") from e

        input_ids = list(encoding['input_ids'])
        attention_mask = list(encoding['attention_mask'])
        if len(input_ids) > options.max_length:
            raise TokenizationError(
                f"Encoded length {len(input_ids)} exceeds max_length={options.max_length} "
                f"with truncation disabled"
            )

        token_type_ids = encoding.get('token_type_ids')
        tokenized = TokenizedInput(
            input_ids=input_ids,
            attention_mask=attention_mask,
            token_type_ids=list(token_type_ids) if token_type_ids is not None else None,
            context_length=self._count_context_tokens(tokenizer, encoding, context),
        )

        self.logger.debug(
            f"Encoded pair into {len(tokenized)} tokens ({tokenized.context_length} from context)"
        )
        return tokenized

    @staticmethod
    def _count_context_tokens(tokenizer, encoding, context: str) -> int:
        if getattr(encoding, 'is_fast', False):
            return sum(1 for sequence_id in encoding.sequence_ids() if sequence_id == 1)
        # Slow tokenizers do not track sequence ids; count the untruncated context.
        return len(tokenizer.encode(context, add_special_tokens=False))

    def decode(
        self,
        tokenizer: PreTrainedTokenizerBase,
        token_ids: Sequence[int],
        options: TokenizerOptions
    ) -> str:
        """Convert token ids back into text."""
        return tokenizer.decode(
            [int(token_id) for token_id in token_ids],
            skip_special_tokens=options.skip_special_tokens
        )

    async def tokenize(
        self,
        question: str,
        context: str,
        max_length: int,
        model_id: str,
        options: Optional[TokenizerOptions] = None
    ) -> TokenizedInput:
        """Load the tokenizer for ``model_id`` and encode the pair.

        Args:
            question: Question text.
            context: Context passage.
            max_length: Upper bound on the encoded length.
            model_id: Tokenizer identifier (hub name or local directory).
            options: Base options; ``max_length`` overrides their own.

        Returns:
            Encoded input.
        """
        base = options if options is not None else TokenizerOptions()
        options = replace(base, max_length=max_length)
        tokenizer = await self.load(model_id)
        return self.encode(tokenizer, question, context, options)
