#!/usr/bin/env python3
"""Generate a deck from the command line and write it as JSON."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv
from pydantic import ValidationError

from src.agents.deck_agent.orchestrator import GenerationOptions, IterativeOrchestrator, ProgressEvent
from src.db.generation_log import GenerationLog, get_log_store
from src.llm_gateway import LLMGateway
from src.slide_generation.config import PipelineConfig
from src.slide_generation.framework_selector import SelectionStrategy
from src.slide_generation.frameworks import all_frameworks
from src.slide_generation.models import GenerationRequest, PresentationType, Tone


def _print_progress(event: ProgressEvent) -> None:
    print(f"[{event.progress:3d}%] {event.stage.value}: {event.message}", file=sys.stderr)


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate a presentation deck.")
    parser.add_argument("prompt", help="What the deck should be about.")
    parser.add_argument("--slides", type=int, default=5, help="Number of slides (1-30, default: 5).")
    parser.add_argument(
        "--type",
        dest="presentation_type",
        choices=[t.value for t in PresentationType],
        default=PresentationType.BUSINESS.value,
    )
    parser.add_argument("--audience", default=None, help="Target audience.")
    parser.add_argument("--tone", choices=[t.value for t in Tone], default=Tone.PROFESSIONAL.value)
    parser.add_argument("--framework", choices=[f.id for f in all_frameworks()], help="Force a framework.")
    parser.add_argument("--rules", action="store_true", help="Pick the framework with keyword rules only.")
    parser.add_argument("--provider", choices=["anthropic", "openai", "gemini"])
    parser.add_argument("--parallel", action="store_true", help="Generate slides concurrently.")
    parser.add_argument("--no-refine", action="store_true", help="Skip the refinement loop.")
    parser.add_argument("--target", type=int, default=None, help="Target quality score (50-100).")
    parser.add_argument("--out", type=Path, help="Write the result JSON here instead of stdout.")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        request = GenerationRequest(
            prompt=args.prompt,
            presentation_type=args.presentation_type,
            slide_count=args.slides,
            audience=args.audience,
            tone=args.tone,
            framework=args.framework,
        )
        overrides = {"target_quality_score": args.target} if args.target is not None else None
        config = PipelineConfig().merged(overrides)
    except ValidationError as exc:
        print(f"Invalid arguments:\n{exc}", file=sys.stderr)
        return 2

    gateway = LLMGateway(args.provider)
    if not gateway.has_credentials():
        print(f"No API key configured for provider '{gateway.provider}'", file=sys.stderr)
        return 2

    log = GenerationLog(store=get_log_store(), request=request.to_payload())
    orchestrator = IterativeOrchestrator(gateway, config, log=log)
    options = GenerationOptions(
        on_progress=_print_progress,
        parallel_slides=args.parallel,
        enable_refinement=not args.no_refine,
        framework_strategy=SelectionStrategy.RULES if args.rules else SelectionStrategy.LLM,
    )
    result = asyncio.run(orchestrator.generate_presentation(request, options))

    output = json.dumps(result.to_payload(), indent=2, ensure_ascii=False)
    if args.out:
        args.out.write_text(output, encoding="utf-8")
        print(f"Wrote {args.out}", file=sys.stderr)
    else:
        print(output)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
