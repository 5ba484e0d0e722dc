from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.rule import Rule
from rich.table import Table

from .cache import ReferenceCache
from .config import ILLUSTRATION, TYPEFACE, ForgeConfig, ImageOptions, Settings
from .errors import ForgeError
from .graph import ForgeController, stream_session
from .llm.gemini import create_backend
from .nodes.archive import SessionStore
from .nodes.extract import describe_reference, extract_features
from .progress import EventKind, ProgressEvent
from .script import classify_script
from .state import ForgeRequest, ImageArtifact, SessionResult

console = Console()


def render_event(event: ProgressEvent) -> None:
    p = event.payload
    kind = event.kind
    if kind == EventKind.SESSION_STARTED:
        console.print(Rule(f"[bold magenta]{p['variant']}: {p['target']}[/bold magenta]"))
        console.print(f"  [dim]session {p['sessionId']} ({p['scriptType']})[/dim]")
    elif kind == EventKind.STATUS:
        console.print(f"  [dim]→ {p['message']}[/dim]")
    elif kind == EventKind.REFERENCE_READY:
        note = " (cached)" if p.get("cached") else ""
        console.print(f"  [green]✓ Reference DNA in {p['time']:.1f}s{note}[/green]")
        if p.get("warning"):
            console.print(f"  [yellow]⚠ {p['warning']}[/yellow]")
    elif kind == EventKind.ITERATION_STARTED:
        console.print(f"\n[bold]{p['message']}[/bold]")
    elif kind == EventKind.CANDIDATE_READY:
        console.print(f"  [green]✓ Image in {p['generationTime']:.1f}s[/green] [dim]{p.get('imagePath') or ''}[/dim]")
    elif kind == EventKind.ITERATION_EVALUATED:
        flag = " [red](generic fallback)[/red]" if p["genericFallback"] else ""
        console.print(
            f"  score [bold]{p['score']}[/bold]{flag}  "
            f"visual {p['visualScore']:g} · text {p['textAccuracy']:g} · dna {p['dnaScore']:g}"
        )
        critique = p["visualEvaluation"].get("critique")
        if critique:
            console.print(f"  [dim]{critique}[/dim]")
    elif kind == EventKind.ITERATION_FAILED:
        console.print(f"  [yellow]⚠ {p['stage']} failed: {p['message']}[/yellow]")
    elif kind == EventKind.COLOR_VARIATION:
        v = p["variation"]
        console.print(f"  [cyan]palette {v['name']}: {v['status']}[/cyan]")
    elif kind == EventKind.ERROR:
        console.print(f"[bold red]Error:[/bold red] {p['message']}")


def summary_table(result: SessionResult) -> Table:
    table = Table(title=f"{result.target} ({result.status.value})")
    table.add_column("#", justify="right")
    table.add_column("status")
    table.add_column("score", justify="right")
    table.add_column("visual", justify="right")
    table.add_column("text", justify="right")
    table.add_column("dna", justify="right")
    table.add_column("image")
    for it in result.iterations:
        sub = it.sub_scores
        mark = " *" if it.index == result.best_iteration else ""
        table.add_row(
            f"{it.index}{mark}",
            it.status.value,
            "" if it.score is None else f"{it.score:g}",
            f"{sub.visual:g}" if sub else "",
            f"{sub.accuracy:g}" if sub else "",
            f"{sub.dna:g}" if sub else "",
            (it.image.path if it.image else None) or it.error or "",
        )
    return table


async def _forge(args: argparse.Namespace, settings: Settings) -> SessionResult:
    config = ForgeConfig.for_variant(
        args.variant,
        settings,
        max_iterations=args.max_iterations,
        threshold=args.threshold,
        color_variations=args.color_variations,
    )
    if args.size or args.aspect_ratio:
        config = replace(
            config,
            image=ImageOptions(
                aspect_ratio=args.aspect_ratio or config.image.aspect_ratio,
                image_size=args.size or config.image.image_size,
            ),
        )
    request = ForgeRequest(
        reference=ImageArtifact.from_path(args.reference) if args.reference else None,
        target=args.target,
        strategy=args.strategy,
        mode=args.mode,
    )
    controller = ForgeController(
        config,
        settings=settings,
        store=SessionStore(args.outdir or settings.output_dir),
        cache=ReferenceCache(),
    )
    async for event in stream_session(controller, request):
        render_event(event)
    if controller.result is None:
        raise ForgeError("session did not start")
    return controller.result


async def _analyze(args: argparse.Namespace, settings: Settings) -> dict:
    config = ForgeConfig.for_variant(args.variant, settings)
    backend = create_backend(settings)
    image = ImageArtifact.from_path(args.reference)
    script = classify_script(args.text or "")
    extraction = await extract_features(backend, image, config, script)
    out = {"scriptType": script.value, "dna": extraction.dna.to_json_dict(), "error": extraction.error}
    if args.variant == TYPEFACE:
        out["visualDescription"] = (await describe_reference(backend, image, config)).to_json_dict()
    return out


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="typoforge", description="Reference-style typography and illustration forge")
    parser.add_argument("--offline", action="store_true", help="Use the deterministic placeholder backend (no API calls)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    forge = sub.add_parser("forge", help="Run the generate/evaluate loop against a reference image")
    forge.add_argument("reference", type=str, help="Reference image (.png/.jpg)")
    forge.add_argument("target", type=str, help="Text to render (typeface) or subject to depict (illustration)")
    forge.add_argument("--variant", choices=[TYPEFACE, ILLUSTRATION], default=TYPEFACE)
    forge.add_argument("--max-iterations", type=int, default=None)
    forge.add_argument("--threshold", type=float, default=None, help="Convergence score (0-100)")
    forge.add_argument("--strategy", type=str, default=None, help="Free-form hint passed to the generator")
    forge.add_argument("--mode", choices=["transform", "variation"], default="transform", help="Illustration mode")
    forge.add_argument("--color-variations", type=int, default=None, help="Illustration palette variations (0 disables)")
    forge.add_argument("--size", choices=["1K", "2K", "4K"], default=None)
    forge.add_argument("--aspect-ratio", type=str, default=None, help="e.g. 1:1, 16:9")
    forge.add_argument("--outdir", type=str, default="", help="Session output root (default: TYPOFORGE_OUTPUT_DIR)")
    forge.add_argument("--json", action="store_true", help="Print the session summary as JSON")

    analyze = sub.add_parser("analyze", help="Extract and print the DNA of a reference image")
    analyze.add_argument("reference", type=str)
    analyze.add_argument("--variant", choices=[TYPEFACE, ILLUSTRATION], default=TYPEFACE)
    analyze.add_argument("--text", type=str, default="", help="Text shown in the image, used to pick the script")

    feedback = sub.add_parser("feedback", help="Attach a 1-5 rating to a stored iteration")
    feedback.add_argument("session_id", type=str)
    feedback.add_argument("iteration", type=int)
    feedback.add_argument("rating", type=int)
    feedback.add_argument("--comment", type=str, default="")
    feedback.add_argument("--outdir", type=str, default="")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    settings = Settings.from_env()
    if args.offline:
        settings = replace(settings, offline=True)

    try:
        if args.command == "forge":
            if not Path(args.reference).exists():
                raise SystemExit(f"Reference image not found: {args.reference}")
            result = asyncio.run(_forge(args, settings))
            if args.json:
                console.print_json(json.dumps(result.to_dict(), ensure_ascii=False))
            elif result.iterations:
                console.print()
                console.print(summary_table(result))
            if result.final_image_path:
                console.print(f"[bold green]Final image:[/bold green] {result.final_image_path}")
            if result.output_dir:
                console.print(f"Artifacts saved under: {result.output_dir}")
            if result.error:
                raise SystemExit(1)
        elif args.command == "analyze":
            if not Path(args.reference).exists():
                raise SystemExit(f"Reference image not found: {args.reference}")
            console.print_json(json.dumps(asyncio.run(_analyze(args, settings)), ensure_ascii=False))
        elif args.command == "feedback":
            store = SessionStore(args.outdir or settings.output_dir)
            doc = store.amend_feedback(args.session_id, args.iteration, args.rating, args.comment)
            console.print(f"[green]✓[/green] Stored rating {doc['userFeedback']['rating']} for iteration {args.iteration}")
    except ForgeError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
