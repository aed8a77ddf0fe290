"""
Tests for the Output Store on SQLite.
"""
import pytest

from promptrelay.core.exceptions import InvalidRequest, OutputNotFound
from promptrelay.models.output import Feedback, Output, OutputStatus
from promptrelay.models.request import GenerationRequest, OutputFormat
from promptrelay.models.routing import RoutingAttempt, RoutingDecision


def make_output(**overrides) -> Output:
    decision = RoutingDecision(policy_used=True, policy_name="default", requested_model="gpt-4o")
    decision.record(RoutingAttempt(model="gpt-4o", estimated_cost=0.004, success=True, response_length=8))
    decision.finalize("gpt-4o")
    fields = dict(
        id="",
        tenant_id="acme",
        user_id="u-1",
        template_name="Hello {{name}}",
        model_name="gpt-4o",
        format=OutputFormat.TEXT,
        prompt="Hello Alice",
        context={"name": "Alice"},
        raw_response="Hi Alice",
        parsed_output="Hi Alice",
        status=OutputStatus.COMPLETED,
        routing_decision=decision,
        estimated_cost=0.004,
        input_tokens=2,
        output_tokens=2,
    )
    fields.update(overrides)
    return Output(**fields)


class TestPersistAndGet:
    async def test_round_trip(self, output_store):
        saved = await output_store.persist(make_output())
        loaded = await output_store.get(saved.id)

        assert saved.id
        assert loaded.prompt == "Hello Alice"
        assert loaded.context == {"name": "Alice"}
        assert loaded.status == OutputStatus.COMPLETED
        assert loaded.final_model == "gpt-4o"
        assert loaded.routing_decision.total_attempts == 1
        assert loaded.routing_decision.attempts[0].success
        assert loaded.created_at is not None

    async def test_json_parsed_output_preserved(self, output_store):
        saved = await output_store.persist(
            make_output(format=OutputFormat.JSON, parsed_output={"title": "Shoes", "tags": ["a"]})
        )
        loaded = await output_store.get(saved.id)
        assert loaded.parsed_output == {"title": "Shoes", "tags": ["a"]}

    async def test_get_missing(self, output_store):
        with pytest.raises(OutputNotFound):
            await output_store.get("does-not-exist")

    async def test_list_recent_is_tenant_scoped(self, output_store):
        for i in range(3):
            await output_store.persist(make_output(prompt=f"p{i}"))
        await output_store.persist(make_output(tenant_id="globex"))

        recent = await output_store.list_recent("acme", limit=2)

        assert len(recent) == 2
        assert all(o.tenant_id == "acme" for o in recent)

    async def test_persist_failure(self, output_store):
        request = GenerationRequest(template="t", model="gpt-4o", tenant_id="acme", job_id="job-1")
        failed = await output_store.persist_failure(request, "RuntimeError: db down")

        loaded = await output_store.get(failed.id)
        assert loaded.status == OutputStatus.FAILED
        assert loaded.error == "RuntimeError: db down"
        assert loaded.job_id == "job-1"
        assert loaded.raw_response is None


class TestCorrections:
    async def test_correct_cost_is_idempotent(self, output_store):
        saved = await output_store.persist(make_output())

        first = await output_store.correct_cost(saved.id, 0.0031234567, input_tokens=120, output_tokens=40)
        second = await output_store.correct_cost(saved.id, 0.0031234567, input_tokens=120, output_tokens=40)

        assert first.actual_cost == pytest.approx(0.003123)
        assert (second.actual_cost, second.input_tokens, second.output_tokens) == (
            first.actual_cost,
            first.input_tokens,
            first.output_tokens,
        )
        assert second.estimated_cost == pytest.approx(0.004)
        assert second.raw_response == "Hi Alice"

    async def test_correct_cost_missing(self, output_store):
        with pytest.raises(OutputNotFound):
            await output_store.correct_cost("nope", 1.0)

    async def test_set_feedback(self, output_store):
        saved = await output_store.persist(make_output())

        updated = await output_store.set_feedback(saved.id, Feedback.THUMBS_DOWN, "too terse")

        assert updated.feedback == Feedback.THUMBS_DOWN
        assert updated.feedback_comment == "too terse"
        assert updated.feedback_at is not None
        assert updated.raw_response == "Hi Alice"


class TestReplay:
    async def test_rerun_copies_request(self, output_store):
        saved = await output_store.persist(make_output())

        request = await output_store.replay(saved.id)

        assert request.template == "Hello {{name}}"
        assert request.model == "gpt-4o"
        assert request.context == {"name": "Alice"}
        assert request.tenant_id == "acme"
        assert request.source_output_id == saved.id
        assert request.job_id is None

    async def test_regenerate_overrides_without_mutating(self, output_store):
        saved = await output_store.persist(make_output())

        request = await output_store.replay(saved.id, model="claude-3-haiku", context={"name": "Bob"})

        assert request.model == "claude-3-haiku"
        assert request.context == {"name": "Bob"}
        original = await output_store.get(saved.id)
        assert original.model_name == "gpt-4o"
        assert original.context == {"name": "Alice"}

    async def test_blank_model_override_rejected(self, output_store):
        saved = await output_store.persist(make_output())

        with pytest.raises(InvalidRequest) as excinfo:
            await output_store.replay(saved.id, model="   ")
        assert excinfo.value.status_code == 400
        assert not excinfo.value.retryable
