"""Flask blueprint exposing generation, refinement and validation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context
from pydantic import ValidationError

from src.db.generation_log import GenerationLog, get_log_store
from src.llm_gateway import LLMError, LLMGateway
from src.slide_generation.cancellation import CancellationToken
from src.slide_generation.config import PipelineConfig
from src.slide_generation.frameworks import get_framework
from src.slide_generation.models import GenerationRequest, SlideOutline
from src.validation.deck_validator import DeckValidator, identify_refinement_targets
from src.validation.refinement import RefinementEngine, combined_score
from src.validation.slide_validator import SlideValidator

from .orchestrator import GenerationOptions, IterativeOrchestrator, ProgressEvent, classify_error
from .schemas import DeckBody, GenerateBody
from .streaming import SSE_HEADERS, GenerationStream

logger = logging.getLogger(__name__)

deck_bp = Blueprint("deck", __name__, url_prefix="/api")

STATUS_BY_ERROR = {
    "authentication": 401,
    "rate_limit": 429,
    "connection": 502,
    "malformed_response": 502,
    "llm": 502,
    "cancelled": 409,
    "internal": 500,
}


def _gateway_factory() -> Callable[..., LLMGateway]:
    return current_app.config.get("DECK_GATEWAY_FACTORY", LLMGateway)


def _build_gateway(body: Any) -> LLMGateway:
    return _gateway_factory()(body.provider, api_key=body.api_key)


def _pipeline_config(body: Any) -> PipelineConfig:
    base = current_app.config.get("DECK_PIPELINE_CONFIG") or PipelineConfig()
    return base.merged(body.config)


def _error(message: str, status: int, **extra: Any) -> Tuple[Response, int]:
    return jsonify({"success": False, "error": message, **extra}), status


def _parse(model: Any) -> Any:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")
    return model.model_validate(payload)


def _bad_request(exc: Exception) -> Tuple[Response, int]:
    if isinstance(exc, ValidationError):
        details = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        return _error("Invalid request", 400, details=details)
    return _error(str(exc), 400)


def _llm_failure(exc: LLMError) -> Tuple[Response, int]:
    kind = classify_error(exc)
    return _error(str(exc), STATUS_BY_ERROR.get(kind, 502), errorType=kind)


def _generate(force_stream: bool = False):
    try:
        body: GenerateBody = _parse(GenerateBody)
        gen_request = body.to_request()
        config = _pipeline_config(body)
        gateway = _build_gateway(body)
    except (ValidationError, ValueError) as exc:
        return _bad_request(exc)

    log = GenerationLog(store=get_log_store(), request=gen_request.to_payload())
    orchestrator = IterativeOrchestrator(gateway, config, log=log)

    def run(on_progress: Optional[Callable[[ProgressEvent], None]], token: CancellationToken):
        options = GenerationOptions(
            on_progress=on_progress,
            cancellation=token,
            parallel_slides=body.parallel_slides,
            enable_refinement=body.enable_refinement,
            framework_strategy=body.framework_strategy,
        )
        return orchestrator.generate_presentation(gen_request, options)

    if body.stream or force_stream:
        stream = GenerationStream(log.generation_id, run)
        return Response(
            stream_with_context(stream.events()),
            mimetype="text/event-stream",
            headers=SSE_HEADERS,
        )

    result = asyncio.run(run(None, CancellationToken()))
    payload = result.to_payload()
    if result.success:
        return jsonify(payload)
    payload["error"] = "; ".join(result.errors) or "Generation failed"
    return jsonify(payload), STATUS_BY_ERROR.get(result.error_type or "internal", 500)


@deck_bp.route("/generate", methods=["POST"])
def generate():
    return _generate()


@deck_bp.route("/generate/stream", methods=["POST"])
def generate_stream():
    return _generate(force_stream=True)


@deck_bp.route("/refine", methods=["POST"])
def refine():
    try:
        body: DeckBody = _parse(DeckBody)
        gen_request = body.to_request()
        config = _pipeline_config(body)
        gateway = _build_gateway(body)
    except (ValidationError, ValueError) as exc:
        return _bad_request(exc)

    log = GenerationLog(store=get_log_store(), kind="refinement", request=gen_request.to_payload())
    gateway.subscribe(log.record_llm_call)
    engine = RefinementEngine(gateway, config, log=log)
    try:
        result = asyncio.run(
            engine.refine_presentation(body.presentation, gen_request, framework=get_framework(gen_request.framework))
        )
    except LLMError as exc:
        log.record_error("refinement", str(exc))
        log.finalize(classify_error(exc))
        return _llm_failure(exc)
    finally:
        gateway.unsubscribe(log.record_llm_call)

    log.finalize(
        "completed",
        initialScore=result.initial_score,
        finalScore=result.final_score,
        rounds=result.total_rounds,
        stopReason=result.stop_reason.value,
    )
    payload = result.to_payload()
    payload.update(
        {
            "success": True,
            "generationId": log.generation_id,
            "tokensUsed": log.total_tokens,
            "fallbacks": [f.to_dict() for f in log.fallbacks],
        }
    )
    return jsonify(payload)


async def _validate_deck(
    body: DeckBody,
    gen_request: GenerationRequest,
    gateway: LLMGateway,
    config: PipelineConfig,
    log: GenerationLog,
) -> Dict[str, Any]:
    presentation = body.presentation
    framework = get_framework(gen_request.framework)
    slide_validator = SlideValidator(gateway, config, log=log)
    deck_feedback = await DeckValidator(gateway, config, log=log).validate_deck(presentation, gen_request, framework)
    slide_feedback = {}
    for idx, slide in enumerate(presentation.slides):
        entry = SlideOutline.from_slide(slide, idx + 1)
        slide_feedback[slide.id] = await slide_validator.validate_slide(slide, entry, presentation.title)
    return {
        "success": True,
        "generationId": log.generation_id,
        "overallScore": combined_score(deck_feedback, slide_feedback),
        "deck": deck_feedback.to_payload(),
        "slides": {sid: fb.to_payload() for sid, fb in slide_feedback.items()},
        "refinementTargets": [t.to_payload() for t in identify_refinement_targets(deck_feedback, presentation)],
    }


@deck_bp.route("/validate", methods=["POST"])
def validate():
    try:
        body: DeckBody = _parse(DeckBody)
        gen_request = body.to_request()
        config = _pipeline_config(body)
        gateway = _build_gateway(body)
    except (ValidationError, ValueError) as exc:
        return _bad_request(exc)

    log = GenerationLog(store=get_log_store(), kind="validation", request=gen_request.to_payload())
    gateway.subscribe(log.record_llm_call)
    try:
        payload = asyncio.run(_validate_deck(body, gen_request, gateway, config, log))
    except LLMError as exc:
        log.finalize(classify_error(exc))
        return _llm_failure(exc)
    finally:
        gateway.unsubscribe(log.record_llm_call)
    log.finalize("completed", overallScore=payload["overallScore"])
    payload["fallbacks"] = [f.to_dict() for f in log.fallbacks]
    return jsonify(payload)


@deck_bp.route("/generations/<generation_id>", methods=["GET"])
def get_generation(generation_id: str):
    try:
        document = get_log_store().get(generation_id)
    except Exception as exc:
        logger.warning("Generation log lookup failed for %s: %s", generation_id, exc)
        return _error("Generation log store unavailable", 503)
    if document is None:
        return _error("not-found", 404)
    return jsonify(document)


__all__ = ["deck_bp"]
