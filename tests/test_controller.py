from __future__ import annotations

import asyncio
import json

import pytest
from conftest import FakeBackend, judgement, run, visual_for

from typoforge.cache import ReferenceCache
from typoforge.config import ForgeConfig, Settings
from typoforge.errors import EvaluationError, GenerationError
from typoforge.graph import ForgeController, stream_session
from typoforge.nodes.archive import SessionStore
from typoforge.progress import EventKind
from typoforge.state import ForgeRequest, IterationStatus, SessionStatus


def _events(controller, kind):
    return [e for e in controller.channel.events if e.kind == kind]


def test_converges_on_third_iteration(reference):
    backend = FakeBackend(judgements=[judgement(12.5, accuracy=50), judgement(visual_for(70)), judgement(visual_for(92))])
    controller = ForgeController(ForgeConfig(max_iterations=5, threshold=90), backend)
    result = run(controller.run(ForgeRequest(reference, "HELLO")))

    assert result.status == SessionStatus.CONVERGED
    assert [it.score for it in result.iterations] == [50, 70, 92]
    assert (result.best_score, result.best_iteration) == (92, 3)
    assert len(backend.prompts("generate")) == 3

    kinds = controller.channel.kinds()
    assert kinds[0] == EventKind.SESSION_STARTED
    assert kinds[-1] == EventKind.COMPLETE
    assert EventKind.REFERENCE_READY in kinds
    done = controller.channel.events[-1].payload
    assert done["status"] == "converged"
    assert done["bestScore"] == 92 and done["bestIteration"] == 3
    assert controller.channel.closed


def test_best_keeps_earliest_of_equal_scores(reference):
    scores = [60, 85, 70, 85]
    backend = FakeBackend(judgements=[judgement(visual_for(s)) for s in scores])
    controller = ForgeController(ForgeConfig(max_iterations=4, threshold=90), backend)
    result = run(controller.run(ForgeRequest(reference, "HELLO")))

    assert result.status == SessionStatus.EXHAUSTED
    assert [it.score for it in result.iterations] == scores
    assert (result.best_score, result.best_iteration) == (85, 2)


def test_generic_fallback_never_converges(reference):
    backend = FakeBackend(judgements=[judgement(100, generic=True)] * 2)
    controller = ForgeController(ForgeConfig(max_iterations=2, threshold=30), backend)
    result = run(controller.run(ForgeRequest(reference, "HELLO")))

    assert result.status == SessionStatus.EXHAUSTED
    assert all(it.generic_fallback and it.score <= 35 for it in result.iterations)


def test_all_generation_failures_exhaust_with_zero_best(reference):
    backend = FakeBackend(generations=[GenerationError("quota"), None, RuntimeError("boom")])
    controller = ForgeController(ForgeConfig(max_iterations=3), backend)
    result = run(controller.run(ForgeRequest(reference, "HELLO")))

    assert result.status == SessionStatus.EXHAUSTED
    assert (result.best_score, result.best_iteration) == (0, 0)
    assert all(it.status == IterationStatus.FAILED for it in result.iterations)
    failed = _events(controller, EventKind.ITERATION_FAILED)
    assert [e.payload["iteration"] for e in failed] == [1, 2, 3]
    assert all(e.payload["stage"] == "generation" for e in failed)
    assert "No image generated" in failed[1].payload["message"]
    assert not backend.prompts("judge")


def test_feedback_threads_into_next_prompt(reference):
    backend = FakeBackend(judgements=[judgement(visual_for(60)), judgement(visual_for(70))])
    controller = ForgeController(ForgeConfig(max_iterations=2), backend)
    run(controller.run(ForgeRequest(reference, "HELLO", strategy="thicker strokes")))

    first, second = backend.prompts("generate")
    assert "PREVIOUS ATTEMPT" not in first
    assert "STRATEGY: thicker strokes" in first
    assert "Score: 60/100" in second
    assert "curves@0" in second
    assert "critique for visual 0" in second


def test_failed_evaluation_keeps_last_good_feedback(reference):
    backend = FakeBackend(
        judgements=[judgement(visual_for(60)), EvaluationError("judge down"), judgement(visual_for(70))]
    )
    controller = ForgeController(ForgeConfig(max_iterations=3), backend)
    result = run(controller.run(ForgeRequest(reference, "HELLO")))

    assert [it.status for it in result.iterations] == [
        IterationStatus.COMPLETE, IterationStatus.FAILED, IterationStatus.COMPLETE,
    ]
    assert result.iterations[1].image is not None
    failed = _events(controller, EventKind.ITERATION_FAILED)
    assert [e.payload["stage"] for e in failed] == ["evaluation"]
    third = backend.prompts("generate")[2]
    assert "Score: 60/100" in third


def test_judge_garbage_is_an_evaluation_failure(reference):
    backend = FakeBackend(judgements=[{"critique": "no scores"}])
    controller = ForgeController(ForgeConfig(max_iterations=1), backend)
    result = run(controller.run(ForgeRequest(reference, "HELLO")))

    assert result.iterations[0].status == IterationStatus.FAILED
    assert result.status == SessionStatus.EXHAUSTED


def test_cancel_between_iterations(reference):
    backend = FakeBackend(judgements=[judgement(visual_for(s)) for s in (60, 70, 85, 85)])
    controller = ForgeController(ForgeConfig(max_iterations=4, threshold=90), backend)

    async def scenario():
        task = asyncio.create_task(controller.run(ForgeRequest(reference, "HELLO")))
        seen = []
        async for event in controller.channel:
            seen.append(event)
            if event.kind == EventKind.ITERATION_EVALUATED and event.payload["iteration"] == 2:
                controller.cancel()
        return await task, seen

    result, seen = run(scenario())
    assert result.status == SessionStatus.CANCELLED
    assert len(result.iterations) == 2
    assert not [e for e in seen if e.payload.get("iteration") == 3]
    assert seen[-1].kind == EventKind.COMPLETE
    assert seen[-1].payload["status"] == "cancelled"
    assert len(backend.prompts("generate")) == 2


def test_disconnected_reader_stops_session(reference):
    backend = FakeBackend()
    controller = ForgeController(ForgeConfig(max_iterations=3), backend)
    controller.channel.disconnect()
    result = run(controller.run(ForgeRequest(reference, "HELLO")))

    assert result.status == SessionStatus.CANCELLED
    assert controller.channel.events == ()
    assert not backend.calls


def test_missing_reference_is_fatal():
    backend = FakeBackend()
    controller = ForgeController(ForgeConfig(), backend)
    result = run(controller.run(ForgeRequest(None, "HELLO")))

    assert result.status == SessionStatus.FATAL_ERROR
    assert result.iterations == []
    assert controller.channel.kinds() == [EventKind.ERROR]
    assert "reference" in controller.channel.events[0].payload["message"]
    assert not backend.calls


def test_blank_target_is_fatal(reference):
    controller = ForgeController(ForgeConfig(), FakeBackend())
    result = run(controller.run(ForgeRequest(reference, "   ")))

    assert result.status == SessionStatus.FATAL_ERROR
    assert "target" in result.error


def test_missing_credential_is_fatal(reference):
    controller = ForgeController(ForgeConfig(), settings=Settings(api_key=None, offline=False))
    result = run(controller.run(ForgeRequest(reference, "HELLO")))

    assert result.status == SessionStatus.FATAL_ERROR
    assert result.iterations == []
    assert controller.channel.kinds() == [EventKind.ERROR]
    assert "GEMINI_API_KEY" in result.error


def test_default_reference_dna_warns_and_caps_dna_score(reference):
    backend = FakeBackend(reference_dna="not json at all", judgements=[judgement(80)])
    controller = ForgeController(ForgeConfig(max_iterations=1), backend)
    result = run(controller.run(ForgeRequest(reference, "HELLO")))

    dna_event = _events(controller, EventKind.REFERENCE_READY)[0].payload
    assert dna_event["warning"]
    assert dna_event["error"]
    assert result.iterations[0].sub_scores.dna <= 60
    # the loop still runs on defaults
    assert result.iterations[0].status == IterationStatus.COMPLETE


def test_reference_cache_skips_second_extraction(reference):
    cache = ReferenceCache()
    first = FakeBackend(judgements=[judgement(visual_for(92))])
    run(ForgeController(ForgeConfig(max_iterations=1), first, cache=cache).run(ForgeRequest(reference, "HELLO")))
    second = FakeBackend(judgements=[judgement(visual_for(92))])
    controller = ForgeController(ForgeConfig(max_iterations=1), second, cache=cache)
    run(controller.run(ForgeRequest(reference, "HELLO")))

    assert not second.prompts("describe")
    # only the candidate extraction remains
    assert len(second.prompts("dna")) == 1
    assert _events(controller, EventKind.REFERENCE_READY)[0].payload["cached"] is True


def test_session_is_persisted(reference, tmp_path):
    store = SessionStore(tmp_path)
    backend = FakeBackend(judgements=[judgement(visual_for(70)), judgement(visual_for(92))])
    controller = ForgeController(ForgeConfig(max_iterations=3), backend, store=store)
    result = run(controller.run(ForgeRequest(reference, "HELLO"), session_id="s1"))

    root = tmp_path / "s1"
    assert (root / "reference.png").read_bytes() == reference.data
    assert json.loads((root / "reference_dna.json").read_text())["targetText"] == "HELLO"
    assert (root / "iterations" / "iteration_01.png").exists()
    doc = json.loads((root / "iterations" / "iteration_02_eval.json").read_text())
    assert doc["score"] == 92
    session = json.loads((root / "session.json").read_text())
    assert session["bestIteration"] == 2 and session["status"] == "converged"
    assert result.final_image_path.endswith("HELLO_final.png")
    assert (root / "final" / "HELLO_final.png").read_bytes() == b"candidate-2"


def test_japanese_target_requests_japanese_block(reference):
    backend = FakeBackend(judgements=[judgement(visual_for(92))])
    controller = ForgeController(ForgeConfig(max_iterations=1), backend)
    run(controller.run(ForgeRequest(reference, "こんにちは")))

    assert _events(controller, EventKind.SESSION_STARTED)[0].payload["scriptType"] == "japanese"
    assert all("haraiFactor" in p for p in backend.prompts("dna"))
    assert "JAPANESE LETTERFORMS" in backend.prompts("generate")[0]


class _FullDiskStore(SessionStore):
    def save_session(self, result):
        raise OSError("disk full")


def test_persistence_failure_still_completes(reference, tmp_path):
    backend = FakeBackend(judgements=[judgement(visual_for(92))])
    controller = ForgeController(ForgeConfig(max_iterations=1), backend, store=_FullDiskStore(tmp_path))

    async def scenario():
        return [e async for e in stream_session(controller, ForgeRequest(reference, "HELLO"))]

    seen = run(scenario())
    assert seen[-1].kind == EventKind.COMPLETE
    assert "disk full" in seen[-1].payload["error"]
    assert seen[-1].payload["status"] == "converged"
    assert controller.channel.closed
    assert "disk full" in controller.result.error


def test_stream_session_yields_until_complete(reference):
    backend = FakeBackend(judgements=[judgement(visual_for(70)), judgement(visual_for(92))])
    controller = ForgeController(ForgeConfig(max_iterations=3, threshold=90), backend)

    async def scenario():
        return [e async for e in stream_session(controller, ForgeRequest(reference, "HELLO"))]

    seen = run(scenario())
    assert [e.seq for e in seen] == list(range(1, len(seen) + 1))
    assert seen[0].kind == EventKind.SESSION_STARTED
    assert seen[-1].kind == EventKind.COMPLETE
    assert controller.result.status == SessionStatus.CONVERGED


def test_closing_stream_early_cancels_session(reference):
    backend = FakeBackend(judgements=[judgement(visual_for(s)) for s in (60, 70, 80)])
    controller = ForgeController(ForgeConfig(max_iterations=3, threshold=90), backend)

    async def scenario():
        gen = stream_session(controller, ForgeRequest(reference, "HELLO"))
        async for event in gen:
            if event.kind == EventKind.ITERATION_EVALUATED:
                break
        await gen.aclose()

    run(scenario())
    result = controller.result
    assert result.status == SessionStatus.CANCELLED
    assert len(result.iterations) == 1
    assert len(backend.prompts("generate")) == 1
    assert controller.channel.disconnected


def test_controller_runs_a_single_session(reference):
    backend = FakeBackend(judgements=[judgement(visual_for(92))] * 2)
    controller = ForgeController(ForgeConfig(max_iterations=1), backend)
    run(controller.run(ForgeRequest(reference, "HELLO")))

    with pytest.raises(RuntimeError):
        run(controller.run(ForgeRequest(reference, "HELLO")))
    assert controller.channel.kinds().count(EventKind.COMPLETE) == 1
