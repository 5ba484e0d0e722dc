from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, TypedDict

from .dna import DNA, VisualDescription
from .errors import InvalidTransition
from .script import ScriptType


@dataclass
class ImageArtifact:
    data: bytes
    mime_type: str = "image/png"
    path: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_path(cls, path: str | Path) -> "ImageArtifact":
        p = Path(path)
        mime = "image/png" if p.suffix.lower() == ".png" else "image/jpeg"
        return cls(data=p.read_bytes(), mime_type=mime, path=str(p))

    @classmethod
    def from_data_url(cls, url: str) -> "ImageArtifact":
        # "data:image/png;base64,...."
        header, _, payload = url.partition(",")
        mime = header[5:].split(";", 1)[0] if header.startswith("data:") else "image/png"
        return cls(data=base64.b64decode(payload), mime_type=mime or "image/png")

    @property
    def digest(self) -> str:
        return hashlib.sha256(self.data).hexdigest()

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"

    def as_part(self) -> Dict[str, Any]:
        return {"mime_type": self.mime_type, "data": self.data}

    def __bool__(self) -> bool:
        return bool(self.data)


class IterationStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    GENERATED = "generated"
    EVALUATING = "evaluating"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (IterationStatus.COMPLETE, IterationStatus.FAILED)


_TRANSITIONS = {
    IterationStatus.PENDING: {IterationStatus.GENERATING},
    IterationStatus.GENERATING: {IterationStatus.GENERATED, IterationStatus.FAILED},
    # a cancellation noticed between generation and evaluation fails the attempt
    IterationStatus.GENERATED: {IterationStatus.EVALUATING, IterationStatus.FAILED},
    IterationStatus.EVALUATING: {IterationStatus.COMPLETE, IterationStatus.FAILED},
    IterationStatus.COMPLETE: set(),
    IterationStatus.FAILED: set(),
}


class SessionStatus(str, Enum):
    IDLE = "idle"
    EXTRACTING_REFERENCE = "extracting_reference"
    ITERATING = "iterating"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"
    FATAL_ERROR = "fatal_error"

    @property
    def terminal(self) -> bool:
        return self in (
            SessionStatus.CONVERGED,
            SessionStatus.EXHAUSTED,
            SessionStatus.CANCELLED,
            SessionStatus.FATAL_ERROR,
        )


@dataclass(frozen=True)
class ForgeRequest:
    reference: Optional[ImageArtifact]
    target: str
    strategy: Optional[str] = None
    # illustration only: "transform" or "variation"
    mode: str = "transform"


@dataclass(frozen=True)
class ReferenceDescriptor:
    image: ImageArtifact
    dna: DNA
    script: ScriptType
    description: Optional[VisualDescription] = None
    error: Optional[str] = None
    extraction_seconds: float = 0.0

    @property
    def is_default(self) -> bool:
        return self.dna.is_default


@dataclass(frozen=True)
class FeedbackRecord:
    lost_features: Tuple[str, ...]
    preserved_features: Tuple[str, ...]
    previous_score: float
    critique: str


@dataclass(frozen=True)
class SubScores:
    visual: float
    accuracy: float
    dna: float


@dataclass
class IterationAttempt:
    index: int
    status: IterationStatus = IterationStatus.PENDING
    prompt: str = ""
    image: Optional[ImageArtifact] = None
    candidate_dna: Optional[DNA] = None
    score: Optional[float] = None
    sub_scores: Optional[SubScores] = None
    generic_fallback: bool = False
    evaluation: Any = None
    comparison: Any = None
    error: Optional[str] = None
    generation_seconds: float = 0.0
    evaluation_seconds: float = 0.0

    def advance(self, status: IterationStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(self.status.value, status.value)
        self.status = status

    def fail(self, error: str) -> None:
        self.advance(IterationStatus.FAILED)
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration": self.index,
            "status": self.status.value,
            "score": self.score,
            "visualScore": self.sub_scores.visual if self.sub_scores else None,
            "textAccuracy": self.sub_scores.accuracy if self.sub_scores else None,
            "dnaScore": self.sub_scores.dna if self.sub_scores else None,
            "genericFallback": self.generic_fallback,
            "error": self.error,
            "generationTime": round(self.generation_seconds, 3),
            "evaluationTime": round(self.evaluation_seconds, 3),
            "imagePath": self.image.path if self.image else None,
        }


class EvaluationDocument(TypedDict, total=False):
    iteration: int
    score: float
    visualScore: float
    textAccuracy: float
    dnaScore: float
    genericFallback: bool
    visualEvaluation: Dict[str, Any]
    comparison: Dict[str, Any]
    generatedDNA: Dict[str, Any]
    generationTime: float
    evaluationTime: float
    userFeedback: Dict[str, Any]


@dataclass
class SessionResult:
    session_id: str
    target: str
    variant: str
    status: SessionStatus = SessionStatus.IDLE
    best_score: float = 0.0
    best_iteration: int = 0
    iterations: List[IterationAttempt] = field(default_factory=list)
    duration_seconds: float = 0.0
    reference: Optional[ReferenceDescriptor] = None
    error: Optional[str] = None
    output_dir: Optional[str] = None
    final_image_path: Optional[str] = None
    color_variations: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.status == SessionStatus.CONVERGED

    @property
    def completed(self) -> List[IterationAttempt]:
        return [it for it in self.iterations if it.status == IterationStatus.COMPLETE]

    @property
    def best(self) -> Optional[IterationAttempt]:
        for it in self.iterations:
            if it.index == self.best_iteration:
                return it
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "target": self.target,
            "variant": self.variant,
            "status": self.status.value,
            "converged": self.converged,
            "bestScore": self.best_score,
            "bestIteration": self.best_iteration,
            "totalTime": round(self.duration_seconds, 3),
            "error": self.error,
            "finalImagePath": self.final_image_path,
            "referenceDNA": self.reference.dna.to_json_dict() if self.reference else None,
            "iterations": [it.to_dict() for it in self.iterations],
        }
