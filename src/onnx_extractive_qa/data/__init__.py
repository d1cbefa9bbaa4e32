"""Tokenization of question/context pairs."""

from .tokenization import TokenizationAdapter, TokenizedInput, TokenizerOptions

__all__ = ["TokenizationAdapter", "TokenizedInput", "TokenizerOptions"]
