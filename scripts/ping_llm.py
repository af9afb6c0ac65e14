#!/usr/bin/env python3
"""Quick CLI to sanity check connectivity for the configured LLM provider."""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.llm_gateway import LLMError, LLMGateway, ModelConfig


def main() -> int:
    parser = argparse.ArgumentParser(description="Ping an LLM provider with a simple prompt.")
    parser.add_argument(
        "--provider",
        choices=["anthropic", "openai", "gemini"],
        help="Provider to use (default: DECK_LLM_PROVIDER or anthropic).",
    )
    parser.add_argument("--model", help="Model name; defaults to the provider's default model.")
    parser.add_argument(
        "--prompt",
        default="Say hello and identify yourself.",
        help="Text prompt to send to the model.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=60,
        help="Request timeout in seconds (default: 60).",
    )
    args = parser.parse_args()

    gateway = LLMGateway(args.provider, timeout=args.timeout, max_attempts=1)
    if not gateway.has_credentials():
        print(f"No API key configured for provider '{gateway.provider}'", file=sys.stderr)
        return 2

    start = time.perf_counter()
    try:
        response = asyncio.run(
            gateway.complete(
                args.prompt,
                config=ModelConfig(max_tokens=256, temperature=0.0, model=args.model),
                purpose="ping",
            )
        )
    except LLMError as exc:  # pragma: no cover - network interaction
        print(f"Generation failed ({type(exc).__name__}): {exc}", file=sys.stderr)
        return 1
    elapsed = time.perf_counter() - start

    print(f"Provider: {gateway.provider}")
    print(f"Model: {response.model}")
    print(f"Elapsed: {elapsed:.2f}s")
    print(f"Tokens: {response.input_tokens} in / {response.output_tokens} out" + (" (estimated)" if response.estimated else ""))
    print("Response:\n")
    print(response.text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
