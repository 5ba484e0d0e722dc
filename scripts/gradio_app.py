from __future__ import annotations

import logging
import os
from dataclasses import replace
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import gradio as gr

from typoforge.cache import ReferenceCache
from typoforge.config import ILLUSTRATION, TYPEFACE, ForgeConfig, Settings
from typoforge.errors import FeedbackError, ForgeError
from typoforge.graph import ForgeController, stream_session
from typoforge.nodes.archive import SessionStore
from typoforge.progress import EventKind, ProgressEvent
from typoforge.state import ForgeRequest, ImageArtifact

logger = logging.getLogger(__name__)

# shared across sessions of this process; re-running the same reference skips extraction
_CACHE: ReferenceCache = ReferenceCache()


def describe_event(event: ProgressEvent) -> Optional[str]:
    p = event.payload
    kind = event.kind
    if kind == EventKind.SESSION_STARTED:
        return f"Session {p['sessionId']} ({p['variant']}, {p['scriptType']})"
    if kind == EventKind.STATUS:
        return p["message"]
    if kind == EventKind.REFERENCE_READY:
        return f"Reference DNA ready in {p['time']:.1f}s" + (f" - {p['warning']}" if p.get("warning") else "")
    if kind == EventKind.ITERATION_EVALUATED:
        return (
            f"Iteration {p['iteration']}: score {p['score']} "
            f"(visual {p['visualScore']:g}, text {p['textAccuracy']:g}, dna {p['dnaScore']:g})"
            + (" [generic fallback]" if p["genericFallback"] else "")
        )
    if kind == EventKind.ITERATION_FAILED:
        return f"Iteration {p['iteration']} {p['stage']} failed: {p['message']}"
    if kind == EventKind.COLOR_VARIATION:
        return f"Palette {p['variation']['name']}: {p['variation']['status']}"
    if kind == EventKind.COMPLETE:
        return f"Done ({p['status']}): best {p['bestScore']} at iteration {p['bestIteration']} in {p['totalTime']:.1f}s"
    if kind == EventKind.ERROR:
        return f"ERROR: {p['message']}"
    return None


def variant_defaults(variant: str) -> Tuple[int, float]:
    """Slider values for a variant (typeface 5 / 90, illustration 3 / 85)."""
    cfg = ForgeConfig.for_variant(variant)
    return cfg.max_iterations, cfg.threshold


async def run_forge(
    reference: Optional[str],
    target: str,
    variant: str,
    max_iterations: Optional[float],
    threshold: Optional[float],
    strategy: str,
    offline: bool,
    mode: str = "transform",
) -> AsyncIterator[Tuple[Optional[str], List[Tuple[str, str]], str, Optional[Dict[str, Any]]]]:
    settings = Settings.from_env()
    if offline:
        settings = replace(settings, offline=True)
    config = ForgeConfig.for_variant(
        variant,
        settings,
        max_iterations=None if max_iterations is None else int(max_iterations),
        threshold=None if threshold is None else float(threshold),
    )
    request = ForgeRequest(
        reference=ImageArtifact.from_path(reference) if reference else None,
        target=target or "",
        strategy=strategy or None,
        mode=mode or "transform",
    )
    controller = ForgeController(config, settings=settings, store=SessionStore(settings.output_dir), cache=_CACHE)

    log: List[str] = []
    gallery: List[Tuple[str, str]] = []
    async for event in stream_session(controller, request):
        line = describe_event(event)
        if line:
            log.append(line)
        p = event.payload
        if event.kind == EventKind.CANDIDATE_READY and p.get("imagePath"):
            gallery.append((p["imagePath"], f"#{p['iteration']}"))
        elif event.kind == EventKind.ITERATION_EVALUATED:
            caption = f"#{p['iteration']}"
            gallery = [(path, f"{cap} · {p['score']}" if cap == caption else cap) for path, cap in gallery]
        elif event.kind == EventKind.COLOR_VARIATION and p["variation"].get("imagePath"):
            gallery.append((p["variation"]["imagePath"], p["variation"]["name"]))
        yield None, gallery, "\n".join(log), None

    result = controller.result
    if result is None:
        raise ForgeError("session did not start")
    yield result.final_image_path, gallery, "\n".join(log), result.to_dict()


def submit_feedback(session_id: str, iteration: float, rating: float, comment: str) -> str:
    store = SessionStore(Settings.from_env().output_dir)
    try:
        store.amend_feedback(session_id.strip(), int(iteration), int(rating), comment or "")
    except FeedbackError as e:
        return f"Could not store feedback: {e}"
    return f"Stored rating {int(rating)} for iteration {int(iteration)}."


def app() -> gr.Blocks:
    with gr.Blocks(title="Typoforge") as demo:
        gr.Markdown("""
        # Typoforge
        - Upload a reference logotype (or illustration) and the text/subject to render in its style.
        - Each iteration is generated, scored against the reference, and fed back into the next prompt.
        - Needs `GEMINI_API_KEY`; tick *Offline* to run with deterministic placeholders instead.
        """)

        with gr.Tab("Forge"):
            with gr.Row():
                reference = gr.Image(label="Reference image", type="filepath")
                with gr.Column():
                    target = gr.Textbox(label="Target text / subject", placeholder="e.g. COFFEE or a running fox")
                    variant = gr.Radio([TYPEFACE, ILLUSTRATION], value=TYPEFACE, label="Variant")
                    mode = gr.Radio(["transform", "variation"], value="transform", label="Illustration mode")
                    strategy = gr.Textbox(label="Strategy hint (optional)", lines=2)
                    with gr.Row():
                        max_iterations = gr.Slider(1, 10, value=5, step=1, label="Max iterations")
                        threshold = gr.Slider(50, 100, value=90, step=1, label="Convergence threshold")
                    offline = gr.Checkbox(value=False, label="Offline (placeholder backend)")
            run_btn = gr.Button("Forge")
            final_img = gr.Image(label="Best result", type="filepath")
            gallery = gr.Gallery(label="Iterations", columns=4)
            log = gr.Textbox(label="Progress", lines=12, interactive=False)
            summary = gr.JSON(label="Session")

            variant.change(variant_defaults, inputs=[variant], outputs=[max_iterations, threshold])
            run_btn.click(
                run_forge,
                inputs=[reference, target, variant, max_iterations, threshold, strategy, offline, mode],
                outputs=[final_img, gallery, log, summary],
            )

        with gr.Tab("Feedback"):
            session_id = gr.Textbox(label="Session id")
            with gr.Row():
                iteration = gr.Number(value=1, precision=0, label="Iteration")
                rating = gr.Slider(1, 5, value=3, step=1, label="Rating")
            comment = gr.Textbox(label="Comment", lines=3)
            fb_btn = gr.Button("Submit")
            fb_out = gr.Markdown()
            fb_btn.click(submit_feedback, inputs=[session_id, iteration, rating, comment], outputs=[fb_out])

    return demo


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    port = int(os.getenv("PORT", "7860"))
    app().launch(server_name="0.0.0.0", server_port=port)
