"""Tests for the AI service orchestration flow."""
import asyncio

import pytest

from ai.adapters.cache import ResponseCache
from ai.config import OrchestratorConfig
from ai.cost_tracker import CostTracker
from ai.service import AIService, encouragement_cache_key, get_priority
from ai.types import (
    AIProvider,
    CostLimits,
    EncouragementContext,
    EncouragementRequest,
    Level,
    TaskShrinkRequest,
    Tone,
)
from core.errors import CostLimitExceededError, NoProviderAvailableError
from core.monitoring import MonitoringService
from core.queues import RequestQueue
from fakes import ENCOURAGEMENT_REPLY, SHRINK_REPLY, FakeProvider, StreamingFakeProvider


@pytest.fixture
def config():
    return OrchestratorConfig(
        primary_provider=AIProvider.CLAUDE,
        fallback_order=[AIProvider.OPENAI, AIProvider.OLLAMA],
        queue_concurrency=1,
        retry_delay=1.0,
    )


@pytest.fixture
def claude():
    return FakeProvider(AIProvider.CLAUDE)


@pytest.fixture
def monitoring():
    return MonitoringService()


def make_service(config, providers, sleep_recorder, clock, monitoring=None, limits=None):
    return AIService(
        config,
        providers={p.name: p for p in providers},
        queue=RequestQueue(
            concurrency=config.queue_concurrency,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            sleep=sleep_recorder,
        ),
        cost_tracker=CostTracker(limits or config.cost_limits, clock=clock),
        shrink_cache=ResponseCache(max_size=200, ttl=config.cache_ttl, similarity_threshold=0.85, clock=clock),
        encouragement_cache=ResponseCache(max_size=50, ttl=config.cache_ttl, clock=clock),
        monitoring=monitoring,
    )


class TestShrinkTask:

    @pytest.mark.asyncio
    async def test_rate_limited_call_is_retried_once(self, config, sleep_recorder, clock):
        flaky = FakeProvider(AIProvider.CLAUDE, replies=[RuntimeError("rate limit exceeded"), SHRINK_REPLY])
        service = make_service(config, [flaky], sleep_recorder, clock)

        result = await service.shrink_task(TaskShrinkRequest(task_title="write report"))

        assert flaky.calls == 2
        assert sleep_recorder.delays == [pytest.approx(config.retry_delay)]
        assert result == flaky.parse_shrink_response("write report", SHRINK_REPLY)

    @pytest.mark.asyncio
    async def test_records_usage_and_metrics(self, config, sleep_recorder, clock, monitoring):
        claude = FakeProvider(AIProvider.CLAUDE, cost_per_token=0.001)
        service = make_service(config, [claude], sleep_recorder, clock, monitoring=monitoring)

        await service.shrink_task(TaskShrinkRequest(task_title="write report"))

        records = service.cost_tracker.export_records()
        assert len(records) == 1
        assert records[0].provider == AIProvider.CLAUDE
        assert records[0].input_tokens == pytest.approx(len("write report") / 4)
        assert records[0].cost > 0
        assert monitoring.sample("shrink_ai_requests_total", {"provider": "claude", "kind": "shrink"}) == 1.0

    @pytest.mark.asyncio
    async def test_similar_title_served_from_cache(self, config, claude, sleep_recorder, clock, monitoring):
        service = make_service(config, [claude], sleep_recorder, clock, monitoring=monitoring)

        first = await service.shrink_task(TaskShrinkRequest(task_title="Write the report"))
        second = await service.shrink_task(TaskShrinkRequest(task_title="write the report!"))

        assert second == first
        assert claude.calls == 1
        stats = service.get_stats()
        assert stats.cached_responses == 1
        assert stats.total_requests == 2
        assert stats.cache_stats["shrink"].size == 1
        assert monitoring.sample("shrink_ai_cache_hits_total", {"cache": "shrink"}) == 1.0

    @pytest.mark.asyncio
    async def test_cache_disabled(self, sleep_recorder, clock, claude):
        config = OrchestratorConfig(primary_provider=AIProvider.CLAUDE, cache_enabled=False)
        service = make_service(config, [claude], sleep_recorder, clock)

        await service.shrink_task(TaskShrinkRequest(task_title="write report"))
        await service.shrink_task(TaskShrinkRequest(task_title="write report"))

        assert claude.calls == 2
        assert service.shrink_cache.size == 0

    @pytest.mark.asyncio
    async def test_falls_back_to_next_available_provider(self, config, sleep_recorder, clock):
        claude = FakeProvider(AIProvider.CLAUDE, available=False)
        ollama = FakeProvider(AIProvider.OLLAMA)
        service = make_service(config, [claude, ollama], sleep_recorder, clock)

        await service.shrink_task(TaskShrinkRequest(task_title="write report"))

        assert claude.calls == 0
        assert ollama.calls == 1
        assert service.cost_tracker.get_stats().requests_by_provider[AIProvider.OLLAMA] == 1

    @pytest.mark.asyncio
    async def test_no_provider_available_is_not_retried(self, config, sleep_recorder, clock, monitoring):
        claude = FakeProvider(AIProvider.CLAUDE, available=False)
        service = make_service(config, [claude], sleep_recorder, clock, monitoring=monitoring)

        with pytest.raises(NoProviderAvailableError):
            await service.shrink_task(TaskShrinkRequest(task_title="write report"))

        assert sleep_recorder.delays == []
        assert service.get_stats().failed_requests == 1
        assert monitoring.sample("shrink_ai_request_failures_total", {"reason": "NoProviderAvailableError"}) == 1.0

    @pytest.mark.asyncio
    async def test_cost_limit_aborts_before_provider_call(self, config, sleep_recorder, clock):
        claude = FakeProvider(AIProvider.CLAUDE, cost_per_token=0.01)
        service = make_service(
            config, [claude], sleep_recorder, clock, limits=CostLimits(per_request_limit=1.0)
        )

        with pytest.raises(CostLimitExceededError) as excinfo:
            await service.shrink_task(TaskShrinkRequest(task_title="write report"))

        assert excinfo.value.limit_type == "request"
        assert claude.calls == 0
        assert sleep_recorder.delays == []

    @pytest.mark.asyncio
    async def test_offline_fallback_only_without_providers(self, config, sleep_recorder, clock):
        claude = FakeProvider(AIProvider.CLAUDE, available=False)
        service = make_service(config, [claude], sleep_recorder, clock)

        result = await service.shrink_task_or_offline(TaskShrinkRequest(task_title="write report"))

        assert result.original_task == "write report"
        assert result.reasoning == "Using writing pattern"

    @pytest.mark.asyncio
    async def test_offline_fallback_does_not_hide_cost_errors(self, config, sleep_recorder, clock):
        claude = FakeProvider(AIProvider.CLAUDE, cost_per_token=1.0)
        service = make_service(config, [claude], sleep_recorder, clock, limits=CostLimits(daily_limit=0.0))

        with pytest.raises(CostLimitExceededError):
            await service.shrink_task_or_offline(TaskShrinkRequest(task_title="write report"))


class TestStreaming:

    @pytest.mark.asyncio
    async def test_stream_delivers_chunks_and_records_usage(self, config, sleep_recorder, clock):
        claude = StreamingFakeProvider(AIProvider.CLAUDE)
        service = make_service(config, [claude], sleep_recorder, clock)
        chunks = []

        result = await service.shrink_task_stream(TaskShrinkRequest(task_title="write report"), chunks.append)

        assert "".join(chunks) == SHRINK_REPLY
        assert len(result.shrunk_tasks) == 2
        assert len(service.cost_tracker.export_records()) == 1
        assert service.shrink_cache.get("write report") == result

    @pytest.mark.asyncio
    async def test_non_streaming_provider_uses_queued_path(self, config, claude, sleep_recorder, clock):
        service = make_service(config, [claude], sleep_recorder, clock)
        chunks = []

        result = await service.shrink_task_stream(TaskShrinkRequest(task_title="write report"), chunks.append)

        assert chunks == []
        assert len(result.shrunk_tasks) == 2
        assert claude.calls == 1

    @pytest.mark.asyncio
    async def test_cached_answer_has_no_chunks(self, config, sleep_recorder, clock):
        claude = StreamingFakeProvider(AIProvider.CLAUDE)
        service = make_service(config, [claude], sleep_recorder, clock)
        await service.shrink_task(TaskShrinkRequest(task_title="write report"))

        chunks = []
        await service.shrink_task_stream(TaskShrinkRequest(task_title="Write report"), chunks.append)

        assert chunks == []
        assert claude.calls == 1

    @pytest.mark.asyncio
    async def test_stream_respects_cost_limits(self, config, sleep_recorder, clock):
        claude = StreamingFakeProvider(AIProvider.CLAUDE, cost_per_token=1.0)
        service = make_service(config, [claude], sleep_recorder, clock, limits=CostLimits(monthly_limit=5.0))

        with pytest.raises(CostLimitExceededError) as excinfo:
            await service.shrink_task_stream(TaskShrinkRequest(task_title="write report"), lambda c: None)

        assert excinfo.value.limit_type == "monthly"
        assert claude.calls == 0
        assert service.get_stats().failed_requests == 1


class TestEncouragement:

    @pytest.mark.asyncio
    async def test_exact_key_cache(self, config, sleep_recorder, clock):
        claude = FakeProvider(AIProvider.CLAUDE, replies=[ENCOURAGEMENT_REPLY])
        service = make_service(config, [claude], sleep_recorder, clock)
        request = EncouragementRequest(context=EncouragementContext.START, task_title="dishes", mood=Level.LOW)

        first = await service.generate_encouragement(request)
        again = await service.generate_encouragement(request)
        other = await service.generate_encouragement(request.model_copy(update={"mood": Level.HIGH}))

        assert first.tone == Tone.CELEBRATORY
        assert again == first
        assert other == first
        assert claude.calls == 2

    @pytest.mark.asyncio
    async def test_usage_sized_from_message(self, config, sleep_recorder, clock):
        claude = FakeProvider(AIProvider.CLAUDE, replies=[ENCOURAGEMENT_REPLY])
        service = make_service(config, [claude], sleep_recorder, clock)

        response = await service.generate_encouragement(EncouragementRequest(context=EncouragementContext.PROGRESS))

        record = service.cost_tracker.export_records()[0]
        assert record.input_tokens == 200
        assert record.output_tokens == pytest.approx(len(response.message) / 4)

    def test_cache_key(self):
        request = EncouragementRequest(context=EncouragementContext.STRUGGLE)
        assert encouragement_cache_key(request) == "struggle::"
        request = EncouragementRequest(context=EncouragementContext.RETURN, task_title="laundry", mood=Level.MEDIUM)
        assert encouragement_cache_key(request) == "return:laundry:medium"


class TestPriority:

    @pytest.mark.parametrize("kwargs, expected", [
        ({}, 0),
        ({"current_mood": Level.LOW}, 2),
        ({"current_mood": Level.LOW, "energy_level": Level.LOW}, 4),
        ({"current_mood": Level.LOW, "energy_level": Level.LOW, "previous_attempts": 2}, 5),
        ({"current_mood": Level.HIGH, "previous_attempts": 1}, 1),
    ])
    def test_get_priority(self, kwargs, expected):
        assert get_priority(TaskShrinkRequest(task_title="t", **kwargs)) == expected

    @pytest.mark.asyncio
    async def test_struggling_user_dispatched_first(self, config, claude, sleep_recorder, clock):
        service = make_service(config, [claude], sleep_recorder, clock)
        served = []
        original = service._execute_shrink_task

        async def tracking(request):
            served.append(request.task_title)
            return await original(request)

        service._execute_shrink_task = tracking
        service.pause()
        routine = asyncio.create_task(service.shrink_task(TaskShrinkRequest(task_title="file taxes")))
        urgent = asyncio.create_task(service.shrink_task(
            TaskShrinkRequest(task_title="wash dishes", current_mood=Level.LOW, energy_level=Level.LOW)
        ))
        await asyncio.sleep(0)
        service.resume()
        await asyncio.gather(routine, urgent)

        assert served == ["wash dishes", "file taxes"]


class TestControl:

    @pytest.mark.asyncio
    async def test_is_available(self, config, sleep_recorder, clock):
        down = FakeProvider(AIProvider.CLAUDE, available=False)
        service = make_service(config, [down], sleep_recorder, clock)
        assert await service.is_available() is False

        down.available = True
        assert await service.is_available() is True

    @pytest.mark.asyncio
    async def test_clear_caches(self, config, claude, sleep_recorder, clock):
        service = make_service(config, [claude], sleep_recorder, clock)
        await service.shrink_task(TaskShrinkRequest(task_title="write report"))

        service.clear_caches()
        await service.shrink_task(TaskShrinkRequest(task_title="write report"))

        assert claude.calls == 2

    def test_budget_and_limits(self, config, claude, sleep_recorder, clock):
        service = make_service(config, [claude], sleep_recorder, clock)
        assert service.get_remaining_budget().daily is None

        service.update_cost_limits(daily_limit=2.0)
        assert service.get_remaining_budget().daily == 2.0

    def test_builds_providers_from_config(self):
        config = OrchestratorConfig.model_validate({
            "primary_provider": "ollama",
            "providers": [{"type": "ollama", "model": "mistral"}],
        })
        service = AIService(config)
        assert service.router.provider_order()[0] == AIProvider.OLLAMA
        assert service.router.get(AIProvider.OLLAMA).model == "mistral"
