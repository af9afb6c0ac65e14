from __future__ import annotations

from src.db import generation_log
from src.db.generation_log import FallbackImpact, GenerationLog, InMemoryLogStore, MongoLogStore, get_log_store
from src.llm_gateway import LLMCallRecord


def _record(purpose: str, tokens_in: int, tokens_out: int) -> LLMCallRecord:
    return LLMCallRecord(
        purpose=purpose,
        model="scripted-model",
        input_tokens=tokens_in,
        output_tokens=tokens_out,
        duration_ms=5,
        estimated=False,
    )


class _BrokenStore:
    def __init__(self) -> None:
        self.attempts = 0

    def save(self, document):
        self.attempts += 1
        raise RuntimeError("store offline")

    def get(self, generation_id):
        return None


class TestInMemoryLogStore:
    def test_evicts_oldest_beyond_capacity(self):
        store = InMemoryLogStore(max_entries=2)
        for gen_id in ("a", "b", "c"):
            store.save({"generationId": gen_id})
        assert store.get("a") is None
        assert store.get("b") == {"generationId": "b"}
        assert store.get("c") == {"generationId": "c"}

    def test_resave_does_not_count_twice(self):
        store = InMemoryLogStore(max_entries=2)
        store.save({"generationId": "a", "v": 1})
        store.save({"generationId": "a", "v": 2})
        store.save({"generationId": "b"})
        assert store.get("a")["v"] == 2

    def test_get_returns_copy(self):
        store = InMemoryLogStore()
        store.save({"generationId": "a", "status": "running"})
        store.get("a")["status"] = "tampered"
        assert store.get("a")["status"] == "running"


class TestGenerationLog:
    def test_initial_document_is_persisted(self, log_store):
        log = GenerationLog("gen_fixed", store=log_store, request={"prompt": "x"})
        doc = log_store.get("gen_fixed")
        assert doc["status"] == "running"
        assert doc["request"] == {"prompt": "x"}
        assert log.generation_id == "gen_fixed"

    def test_generated_ids_are_unique(self):
        assert GenerationLog().generation_id != GenerationLog().generation_id

    def test_fallbacks_are_deduplicated(self, gen_log):
        first = gen_log.record_fallback("slide_validator", "timeout", "heuristic", FallbackImpact.MINOR)
        second = gen_log.record_fallback("slide_validator", "timeout", "heuristic", FallbackImpact.MINOR)
        gen_log.record_fallback("slide_validator", "bad json", "heuristic", "minor")
        assert first is second
        assert len(gen_log.fallbacks) == 2
        assert gen_log.fallbacks[1].impact is FallbackImpact.MINOR

    def test_llm_calls_are_tagged_with_current_stage(self, gen_log):
        gen_log.step("outline", "drafting")
        gen_log.record_llm_call(_record("outline", 100, 50))
        gen_log.step("slides", "writing")
        gen_log.record_llm_call(_record("slide", 40, 60))
        gen_log.record_llm_call(_record("slide", 10, 10))

        assert gen_log.total_tokens == 270
        assert gen_log.tokens_by_stage() == {"outline": 150, "slides": 120}
        assert gen_log.llm_calls[0]["stage"] == "outline"

    def test_finalize_happens_once(self, gen_log, log_store):
        gen_log.record_error("slides", "boom")
        doc = gen_log.finalize("completed", quality=82)
        again = gen_log.finalize("cancelled", quality=10)

        assert doc["status"] == "completed"
        assert again["status"] == "completed"
        assert again["summary"] == {"quality": 82}
        stored = log_store.get(gen_log.generation_id)
        assert stored["status"] == "completed"
        assert stored["errors"][0]["message"] == "boom"

    def test_failing_store_does_not_break_session(self):
        store = _BrokenStore()
        log = GenerationLog(store=store)
        log.step("outline", "drafting")
        doc = log.finalize("completed")
        assert doc["status"] == "completed"
        assert store.attempts == 2

    def test_document_uses_camel_case_keys(self, gen_log):
        gen_log.record_fallback("orchestrator", "slide 3 failed", "template_slide", FallbackImpact.MODERATE, "Edit slide 3")
        doc = gen_log.to_document()
        assert {"generationId", "tokensUsed", "tokensByStage", "llmCalls"} <= set(doc)
        assert doc["fallbacks"][0]["fallbackMethod"] == "template_slide"
        assert doc["fallbacks"][0]["userMessage"] == "Edit slide 3"


class _FakeCollection:
    def __init__(self) -> None:
        self.docs = {}

    def replace_one(self, flt, doc, upsert=False):
        assert upsert is True
        self.docs[flt["generationId"]] = doc

    def find_one(self, flt, projection):
        doc = self.docs.get(flt["generationId"])
        if doc is None:
            return None
        return {k: v for k, v in doc.items() if projection.get(k, 1)}


class TestMongoLogStore:
    def test_save_and_get_hide_storage_fields(self, monkeypatch):
        coll = _FakeCollection()
        monkeypatch.setattr(generation_log, "get_db", lambda: {"generation_logs": coll})
        store = MongoLogStore()
        log = GenerationLog("gen_mongo", store=store)
        log.finalize("completed")

        assert "savedAt" in coll.docs["gen_mongo"]
        doc = store.get("gen_mongo")
        assert doc["status"] == "completed"
        assert "savedAt" not in doc
        assert store.get("gen_other") is None

    def test_backend_selected_from_env(self, monkeypatch):
        monkeypatch.setenv("DECK_LOG_BACKEND", "mongo")
        get_log_store.cache_clear()
        try:
            assert isinstance(get_log_store(), MongoLogStore)
        finally:
            get_log_store.cache_clear()
