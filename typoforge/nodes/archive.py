from __future__ import annotations

import json
import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import FeedbackError
from ..state import EvaluationDocument, ImageArtifact, ReferenceDescriptor, SessionResult

logger = logging.getLogger(__name__)

_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def _ext(image: ImageArtifact) -> str:
    return ".png" if image.mime_type == "image/png" else ".jpg"


def sanitize(text: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", text) or "untitled"


class SessionStore:
    """On-disk layout of one forge session.

    <root>/<session_id>/
        reference.png, reference_dna.json, session.json
        iterations/iteration_NN.png, iterations/iteration_NN_eval.json
        variations/<id>.png
        final/<target>_final.png
    """

    def __init__(self, root: str | Path = "output") -> None:
        self.root = Path(root)

    def session_dir(self, session_id: str) -> Path:
        if not _SESSION_ID.match(session_id or ""):
            raise FeedbackError(f"invalid session id: {session_id!r}")
        return self.root / session_id

    def create(self, session_id: str) -> Path:
        d = self.session_dir(session_id)
        (d / "iterations").mkdir(parents=True, exist_ok=True)
        return d

    def _write_json(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2, default=str))

    def save_reference(self, session_id: str, image: ImageArtifact) -> str:
        path = self.session_dir(session_id) / f"reference{_ext(image)}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(image.data)
        return str(path)

    def save_reference_dna(self, session_id: str, target: str, reference: ReferenceDescriptor) -> None:
        self._write_json(
            self.session_dir(session_id) / "reference_dna.json",
            {
                "targetText": target,
                "scriptType": reference.script.value,
                "extractionTime": round(reference.extraction_seconds, 3),
                "dna": reference.dna.to_json_dict(),
                "visualDescription": reference.description.to_json_dict() if reference.description else None,
                "error": reference.error,
            },
        )

    def iteration_path(self, session_id: str, index: int, suffix: str = ".png") -> Path:
        return self.session_dir(session_id) / "iterations" / f"iteration_{index:02d}{suffix}"

    def save_iteration_image(self, session_id: str, index: int, image: ImageArtifact) -> str:
        path = self.iteration_path(session_id, index, _ext(image))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(image.data)
        image.path = str(path)
        return image.path

    def save_evaluation(self, session_id: str, index: int, doc: EvaluationDocument) -> None:
        self._write_json(self.iteration_path(session_id, index, "_eval.json"), doc)

    def load_evaluation(self, session_id: str, index: int) -> Dict[str, Any]:
        path = self.iteration_path(session_id, index, "_eval.json")
        if not path.exists():
            raise FeedbackError(f"no evaluation for session {session_id} iteration {index}")
        return json.loads(path.read_text())

    def amend_feedback(self, session_id: str, index: int, rating: int, comment: str = "") -> Dict[str, Any]:
        """Merge a user rating (1-5) and comment into an iteration's evaluation document."""
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            raise FeedbackError(f"rating must be an integer from 1 to 5, got {rating!r}")
        doc = self.load_evaluation(session_id, index)
        doc["userFeedback"] = {
            "rating": rating,
            "comment": comment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self._write_json(self.iteration_path(session_id, index, "_eval.json"), doc)
        logger.info("stored feedback for %s iteration %d (rating %d)", session_id, index, rating)
        return doc

    def save_variation(self, session_id: str, variation_id: str, image: ImageArtifact) -> str:
        path = self.session_dir(session_id) / "variations" / f"{sanitize(variation_id)}{_ext(image)}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(image.data)
        image.path = str(path)
        return image.path

    def save_final(self, result: SessionResult) -> Optional[str]:
        best = result.best
        if best is None or best.image is None or not best.image.path:
            return None
        src = Path(best.image.path)
        if not src.exists():
            return None
        dst = self.session_dir(result.session_id) / "final" / f"{sanitize(result.target)}_final{src.suffix}"
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dst)
        return str(dst)

    def save_session(self, result: SessionResult) -> None:
        self._write_json(self.session_dir(result.session_id) / "session.json", result.to_dict())
