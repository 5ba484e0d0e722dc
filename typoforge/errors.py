from __future__ import annotations


class ForgeError(Exception):
    """Base class for errors raised by typoforge."""


class InputError(ForgeError):
    """A required session input (reference image, target) is missing or unusable."""


class MissingCredentialError(ForgeError):
    """No Gemini API key could be found."""


class ExtractionError(ForgeError):
    """Feature extraction produced no usable DNA."""


class GenerationError(ForgeError):
    """The image model failed or returned no image."""


class EvaluationError(ForgeError):
    """The similarity judge failed or returned unusable output."""


class InvalidTransition(ForgeError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot move iteration from {current!r} to {target!r}")
        self.current = current
        self.target = target


class FeedbackError(ForgeError):
    """User feedback could not be stored against an iteration."""
