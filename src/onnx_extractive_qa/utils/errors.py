"""Exception types raised by the question answering pipeline.

Only resource and engine failures are exceptions. A question that yields no
usable span is not an error: the pipeline returns the sentinel
``AnswerResult`` instead.
"""


class QAInferenceError(Exception):
    """Base class for unrecoverable pipeline failures."""


class TokenizationError(QAInferenceError):
    """Tokenizer resource missing or unparsable, or encoding failed."""


class InferenceError(QAInferenceError):
    """Model resource missing, engine execution failure or shape mismatch."""

    def __init__(self, message: str, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


class InferenceTimeout(InferenceError):
    """Resource loading or model execution exceeded its time budget."""

    def __init__(self, message: str) -> None:
        super().__init__(message, timeout=True)
