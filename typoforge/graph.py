"""The forge loop: generate -> extract -> evaluate -> score -> decide."""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Tuple

from .cache import ReferenceCache
from .config import ILLUSTRATION, ForgeConfig, Settings
from .errors import EvaluationError, GenerationError, InputError, MissingCredentialError
from .llm.gemini import ModelBackend, create_backend
from .nodes.archive import SessionStore
from .nodes.extract import describe_reference, extract_features
from .nodes.generate import build_prompt, generate_candidate
from .nodes.judge import VisualEvaluation, evaluate_similarity
from .nodes.variations import plan_variations, render_variation
from .progress import EventKind, ProgressChannel, ProgressEvent
from .scoring import compare_dna, composite_score, is_converged, is_generic_fallback, update_best
from .script import ScriptType, classify_script
from .state import (
    EvaluationDocument,
    FeedbackRecord,
    ForgeRequest,
    ImageArtifact,
    IterationAttempt,
    IterationStatus,
    ReferenceDescriptor,
    SessionResult,
    SessionStatus,
    SubScores,
)

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, str]


def new_session_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


class _Cancelled(Exception):
    """Internal: a cancellation was noticed at a check point."""


def _reference_image(request: ForgeRequest) -> ImageArtifact:
    if request.reference is None:
        raise InputError("Missing required field: reference image")
    return request.reference


class ForgeController:
    """Drives one forge session at a time.

    Iterations are strictly sequential. Cancellation (``cancel()`` or the
    reader disconnecting from ``channel``) is honoured at iteration
    boundaries and right after every awaited model call; the call in flight
    is never interrupted.
    """

    def __init__(
        self,
        config: ForgeConfig,
        backend: Optional[ModelBackend] = None,
        *,
        settings: Optional[Settings] = None,
        store: Optional[SessionStore] = None,
        cache: Optional[ReferenceCache[ReferenceDescriptor]] = None,
        channel: Optional[ProgressChannel] = None,
    ) -> None:
        self.config = config
        self.settings = settings
        self.store = store
        self.cache = cache
        self.channel = channel or ProgressChannel()
        self.result: Optional[SessionResult] = None
        self._backend = backend
        self._cancel_requested = False
        self._started = False

    # -- cancellation -------------------------------------------------------

    def cancel(self) -> None:
        self._cancel_requested = True

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested or self.channel.disconnected

    def _checkpoint(self, attempt: Optional[IterationAttempt] = None) -> None:
        if not self.cancelled:
            return
        if attempt is not None and not attempt.status.terminal:
            attempt.fail("cancelled")
        raise _Cancelled()

    def _emit(self, kind: EventKind, **payload: Any) -> bool:
        return self.channel.emit(kind, **payload)

    def _status(self, status: str, message: str) -> None:
        self._emit(EventKind.STATUS, status=status, message=message)

    # -- entry point --------------------------------------------------------

    async def run(self, request: ForgeRequest, session_id: Optional[str] = None) -> SessionResult:
        if self._started:
            raise RuntimeError("a ForgeController runs a single session; create a new controller")
        self._started = True
        started = time.monotonic()
        result = SessionResult(
            session_id=session_id or new_session_id(),
            target=request.target or "",
            variant=self.config.variant,
        )
        self.result = result
        try:
            self._validate(request)
            backend = self._backend or create_backend(self.settings or Settings.from_env())
        except (InputError, MissingCredentialError) as e:
            return self._fatal(result, str(e), started)

        try:
            await self._run_session(request, backend, result)
            if result.status in (SessionStatus.CONVERGED, SessionStatus.EXHAUSTED):
                await self._color_variations(backend, result)
        except _Cancelled:
            result.status = SessionStatus.CANCELLED
        except asyncio.CancelledError:
            result.status = SessionStatus.CANCELLED
            self._finish(result, started)
            raise
        except Exception as e:
            logger.exception("session %s failed", result.session_id)
            return self._fatal(result, f"{type(e).__name__}: {e}", started)

        self._finish(result, started)
        return result

    def _validate(self, request: ForgeRequest) -> None:
        if request.reference is None or not request.reference.data:
            raise InputError("Missing required field: reference image")
        if not (request.target or "").strip():
            raise InputError("Missing required field: target")
        if self.config.max_iterations < 1:
            raise InputError("max_iterations must be at least 1")

    def _fatal(self, result: SessionResult, message: str, started: float) -> SessionResult:
        logger.error("session %s: %s", result.session_id, message)
        result.status = SessionStatus.FATAL_ERROR
        result.error = message
        result.duration_seconds = time.monotonic() - started
        self._emit(EventKind.ERROR, message=message, sessionId=result.session_id)
        self.channel.close()
        return result

    def _finish(self, result: SessionResult, started: float) -> None:
        result.duration_seconds = time.monotonic() - started
        try:
            if self.store is not None:
                result.final_image_path = self.store.save_final(result)
                self.store.save_session(result)
        except Exception as e:
            logger.exception("session %s: saving results failed", result.session_id)
            result.error = f"Saving session failed: {type(e).__name__}: {e}"
        finally:
            logger.info(
                "session %s %s: best %s (iteration %d) in %.1fs",
                result.session_id, result.status.value, result.best_score, result.best_iteration,
                result.duration_seconds,
            )
            self._emit(
                EventKind.COMPLETE,
                sessionId=result.session_id,
                status=result.status.value,
                converged=result.converged,
                bestScore=result.best_score,
                bestIteration=result.best_iteration,
                totalTime=round(result.duration_seconds, 3),
                finalImagePath=result.final_image_path,
                error=result.error,
            )
            self.channel.close()

    # -- session ------------------------------------------------------------

    async def _run_session(self, request: ForgeRequest, backend: ModelBackend, result: SessionResult) -> None:
        cfg = self.config
        script = classify_script(request.target) if cfg.variant != ILLUSTRATION else ScriptType.LATIN
        reference_image = _reference_image(request)

        if self.store is not None:
            result.output_dir = str(self.store.create(result.session_id))
            reference_image.path = self.store.save_reference(result.session_id, reference_image)

        self._emit(
            EventKind.SESSION_STARTED,
            sessionId=result.session_id,
            variant=cfg.variant,
            target=request.target,
            scriptType=script.value,
        )
        self._checkpoint()

        result.status = SessionStatus.EXTRACTING_REFERENCE
        self._status("analyzing", f"Extracting DNA ({script.label})...")
        reference, cached = await self._reference(backend, request, script)
        result.reference = reference
        self._checkpoint()

        self._emit(
            EventKind.REFERENCE_READY,
            dna=reference.dna.to_json_dict(),
            visualDescription=reference.description.to_json_dict() if reference.description else None,
            scriptType=script.value,
            time=round(reference.extraction_seconds, 3),
            cached=cached,
            warning="DNA extraction returned defaults - scores against it are unreliable" if reference.is_default else None,
            error=reference.error,
        )
        if self.store is not None:
            self.store.save_reference_dna(result.session_id, request.target, reference)

        result.status = SessionStatus.ITERATING
        feedback: Optional[FeedbackRecord] = None
        for index in range(1, cfg.max_iterations + 1):
            # let readers and cancellers run before committing to another iteration
            await asyncio.sleep(0)
            self._checkpoint()
            attempt = IterationAttempt(index=index)
            result.iterations.append(attempt)
            evaluation = await self._iterate(backend, request, reference, attempt, feedback, result)
            if evaluation is None or attempt.score is None:
                # failed attempt: the last good feedback carries forward unchanged
                continue
            result.best_score, result.best_iteration = update_best(
                result.best_score, result.best_iteration, attempt.score, index
            )
            feedback = evaluation.feedback(attempt.score)
            if is_converged(attempt.score, attempt.generic_fallback, cfg.threshold):
                logger.info("converged at iteration %d with %s", index, attempt.score)
                result.status = SessionStatus.CONVERGED
                return
        result.status = SessionStatus.EXHAUSTED

    async def _reference(
        self, backend: ModelBackend, request: ForgeRequest, script: ScriptType
    ) -> Tuple[ReferenceDescriptor, bool]:
        reference_image = _reference_image(request)
        key: CacheKey = (reference_image.digest, self.config.variant, script.value)
        if self.cache is not None:
            hit = self.cache.get(key)
            if hit is not None:
                logger.info("reference features served from cache")
                return hit, True

        started = time.monotonic()
        if self.config.variant == ILLUSTRATION:
            extraction = await extract_features(backend, reference_image, self.config, script)
            description = None
        else:
            extraction, description = await asyncio.gather(
                extract_features(backend, reference_image, self.config, script),
                describe_reference(backend, reference_image, self.config),
            )
        reference = ReferenceDescriptor(
            image=reference_image,
            dna=extraction.dna,
            script=script,
            description=description,
            error=extraction.error,
            extraction_seconds=time.monotonic() - started,
        )
        if self.cache is not None and not reference.is_default:
            self.cache.put(key, reference)
        return reference, False

    # -- one iteration ------------------------------------------------------

    async def _iterate(
        self,
        backend: ModelBackend,
        request: ForgeRequest,
        reference: ReferenceDescriptor,
        attempt: IterationAttempt,
        feedback: Optional[FeedbackRecord],
        result: SessionResult,
    ) -> Optional[VisualEvaluation]:
        cfg = self.config
        index = attempt.index
        self._emit(
            EventKind.ITERATION_STARTED,
            iteration=index,
            message=f"Starting iteration {index}..." if feedback is None
            else f"Starting iteration {index} (with feedback)...",
        )
        self._status("generating", f"Generating iteration {index}/{cfg.max_iterations}...")

        attempt.prompt = build_prompt(cfg, request, reference, feedback)
        attempt.advance(IterationStatus.GENERATING)
        t0 = time.monotonic()
        try:
            image = await generate_candidate(backend, cfg, attempt.prompt, reference)
        except GenerationError as e:
            attempt.generation_seconds = time.monotonic() - t0
            attempt.fail(str(e))
            self._checkpoint()
            logger.warning("iteration %d: %s", index, e)
            self._emit(EventKind.ITERATION_FAILED, iteration=index, stage="generation", message=str(e))
            return None
        attempt.generation_seconds = time.monotonic() - t0
        attempt.image = image
        attempt.advance(IterationStatus.GENERATED)
        self._checkpoint(attempt)

        if self.store is not None:
            self.store.save_iteration_image(result.session_id, index, image)
        self._emit(
            EventKind.CANDIDATE_READY,
            iteration=index,
            imageUrl=image.to_data_url(),
            imagePath=image.path,
            generationTime=round(attempt.generation_seconds, 3),
        )

        self._status("evaluating", f"Evaluating iteration {index}...")
        attempt.advance(IterationStatus.EVALUATING)
        t1 = time.monotonic()
        extraction = await extract_features(backend, image, cfg, reference.script)
        attempt.candidate_dna = extraction.dna
        self._checkpoint(attempt)
        try:
            evaluation = await evaluate_similarity(backend, cfg, request, reference.image, image)
        except EvaluationError as e:
            attempt.evaluation_seconds = time.monotonic() - t1
            attempt.fail(str(e))
            self._checkpoint()
            logger.warning("iteration %d: %s", index, e)
            self._emit(EventKind.ITERATION_FAILED, iteration=index, stage="evaluation", message=str(e))
            return None
        self._checkpoint(attempt)

        comparison = compare_dna(reference.dna, extraction.dna)
        fallback = is_generic_fallback(reference.dna, extraction.dna, evaluation.generic_style)
        sub = SubScores(visual=evaluation.visual, accuracy=evaluation.accuracy, dna=comparison.overall_score)
        attempt.score = composite_score(sub, fallback, cfg)
        attempt.sub_scores = sub
        attempt.generic_fallback = fallback
        attempt.evaluation = evaluation
        attempt.comparison = comparison
        attempt.evaluation_seconds = time.monotonic() - t1
        attempt.advance(IterationStatus.COMPLETE)
        logger.info(
            "iteration %d: score %s (visual %s, accuracy %s, dna %s%s)",
            index, attempt.score, sub.visual, sub.accuracy, sub.dna, ", generic fallback" if fallback else "",
        )

        doc: EvaluationDocument = {
            "iteration": index,
            "score": attempt.score,
            "visualScore": sub.visual,
            "textAccuracy": sub.accuracy,
            "dnaScore": sub.dna,
            "genericFallback": fallback,
            "visualEvaluation": evaluation.to_dict(),
            "comparison": comparison.to_dict(),
            "generatedDNA": extraction.dna.to_json_dict(),
            "generationTime": round(attempt.generation_seconds, 3),
            "evaluationTime": round(attempt.evaluation_seconds, 3),
        }
        self._emit(
            EventKind.ITERATION_EVALUATED,
            **doc,
            detectedText=evaluation.detected_text,
            dnaWarning=extraction.error,
        )
        if self.store is not None:
            self.store.save_evaluation(result.session_id, index, doc)
        return evaluation

    # -- illustration extras ------------------------------------------------

    async def _color_variations(self, backend: ModelBackend, result: SessionResult) -> None:
        cfg = self.config
        best = result.best
        if cfg.variant != ILLUSTRATION or cfg.color_variations <= 0 or best is None or best.image is None:
            return
        reference = result.reference
        if reference is None or reference.dna.is_default:
            logger.info("skipping color variations: reference palette unknown")
            return
        self._status("generating", "Generating color variations...")
        for variation in plan_variations(reference.dna.color_palette, cfg.color_variations):  # type: ignore[union-attr]
            if self.cancelled:
                return
            if variation.id == "original":
                variation.image = best.image
            else:
                self._emit(EventKind.COLOR_VARIATION, iteration=best.index, variation={**variation.to_dict(), "status": "generating"})
                try:
                    variation.image = await render_variation(backend, cfg, best.image, variation)
                    variation.status = "complete"
                except GenerationError as e:
                    logger.warning("%s", e)
                    variation.status = "error"
                if self.cancelled:
                    return
                if variation.image is not None and self.store is not None:
                    self.store.save_variation(result.session_id, variation.id, variation.image)
            payload = variation.to_dict()
            if variation.image is not None:
                payload["imageUrl"] = variation.image.to_data_url()
            result.color_variations.append(payload)
            self._emit(EventKind.COLOR_VARIATION, iteration=best.index, variation=payload)


async def stream_session(
    controller: ForgeController, request: ForgeRequest, session_id: Optional[str] = None
) -> AsyncIterator[ProgressEvent]:
    """Run a session in the background and yield its progress events.

    Closing the generator early counts as a reader disconnect; the session
    then stops at its next check point.
    """
    task = asyncio.create_task(controller.run(request, session_id))
    try:
        async for event in controller.channel:
            yield event
    finally:
        if not task.done() and not controller.channel.closed:
            controller.channel.disconnect()
        await task
