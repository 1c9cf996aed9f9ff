"""
Tokenizer collaborators for the embedding service.

Tokenization itself is external; these classes adapt a source of token ids to
the single call the embedding service needs.
"""

from abc import ABC, abstractmethod
from typing import Any, List

from transformers import AutoTokenizer


class Tokenizer(ABC):
    """Turns text into token ids valid as rows of the embedding table."""

    @abstractmethod
    def encode(self, text: str) -> List[int]:
        """Tokenize text.

        Args:
            text: Input text.

        Returns:
            Token ids.

        Raises:
            ValueError: If the text cannot be tokenized.
        """
        pass

    def tokens(self, text: str) -> List[str]:
        """Literal token strings for display; not consumed by the engine."""
        return [str(token_id) for token_id in self.encode(text)]


class IdListTokenizer(Tokenizer):
    """Reads pre-tokenized input written as a list of ids, e.g. "[15496, 11, 995]".

    Used when tokenization happens on the caller's side and the text already
    carries the ids.
    """

    def encode(self, text: str) -> List[int]:
        if text is None:
            raise TypeError("text cannot be None")

        body = text.strip().strip("[]").strip()
        if not body:
            return []
        try:
            return [int(part.strip()) for part in body.split(",")]
        except ValueError as exc:
            raise ValueError(f"Failed to parse token ids from {text!r}: {exc}") from exc


class HuggingFaceTokenizer(Tokenizer):
    """Adapter over a transformers tokenizer.

    Attributes:
        tokenizer: Wrapped tokenizer exposing encode/convert_ids_to_tokens.
        add_special_tokens: Whether special tokens are added while encoding.
    """

    def __init__(self, tokenizer: Any, add_special_tokens: bool = False) -> None:
        self.tokenizer = tokenizer
        self.add_special_tokens = add_special_tokens

    @classmethod
    def from_pretrained(cls, model_name_or_path: str, **kwargs: Any) -> "HuggingFaceTokenizer":
        """Load a tokenizer by HuggingFace name or local path."""
        return cls(AutoTokenizer.from_pretrained(model_name_or_path, **kwargs))

    def encode(self, text: str) -> List[int]:
        if text is None:
            raise TypeError("text cannot be None")
        return list(self.tokenizer.encode(text, add_special_tokens=self.add_special_tokens))

    def tokens(self, text: str) -> List[str]:
        return list(self.tokenizer.convert_ids_to_tokens(self.encode(text)))
