"""AI service: the orchestration layer in front of the providers.

A call flows cache -> queue -> provider selection -> pre-flight cost check ->
provider call -> usage record -> cache.  Cache hits skip everything after the
lookup, so they take no queue slot and leave no ledger entry.
"""
import json
from typing import Mapping, Optional

from ai.adapters.cache import ResponseCache
from ai.adapters.providers import BaseProvider, ChunkCallback, create_provider
from ai.adapters.router import ProviderRouter
from ai.config import OrchestratorConfig
from ai.cost_tracker import CostTracker
from ai.offline import generate_offline_shrink
from ai.types import (
    AIProvider,
    AIServiceStats,
    CostLimits,
    EncouragementRequest,
    EncouragementResponse,
    Level,
    RemainingBudget,
    TaskShrinkRequest,
    TaskShrinkResponse,
)
from core.errors import CostLimitExceededError, NoProviderAvailableError
from core.logging import logger
from core.monitoring import MonitoringService
from core.queues import RequestQueue

# Pre-flight token estimates (input, output)
SHRINK_TOKEN_ESTIMATE = (500, 1000)
ENCOURAGEMENT_TOKEN_ESTIMATE = (200, 100)

SHRINK_CACHE_SIZE = 200
SHRINK_CACHE_THRESHOLD = 0.85
ENCOURAGEMENT_CACHE_SIZE = 50
ENCOURAGEMENT_CACHE_THRESHOLD = 0.8


def _approx_tokens(text: str) -> float:
    return len(text) / 4


def get_priority(request: TaskShrinkRequest) -> int:
    """Low mood, low energy and earlier failed attempts move a request forward."""
    priority = 0
    if request.current_mood == Level.LOW:
        priority += 2
    if request.energy_level == Level.LOW:
        priority += 2
    if request.previous_attempts > 0:
        priority += 1
    return priority


def encouragement_cache_key(request: EncouragementRequest) -> str:
    mood = request.mood.value if request.mood else ""
    return f"{request.context.value}:{request.task_title or ''}:{mood}"


class AIService:
    """Routes shrink and encouragement requests to the first available provider."""

    def __init__(
        self,
        config: OrchestratorConfig,
        providers: Optional[Mapping[AIProvider, BaseProvider]] = None,
        queue: Optional[RequestQueue] = None,
        cost_tracker: Optional[CostTracker] = None,
        shrink_cache: Optional[ResponseCache[TaskShrinkResponse]] = None,
        encouragement_cache: Optional[ResponseCache[EncouragementResponse]] = None,
        monitoring: Optional[MonitoringService] = None,
    ):
        """
        Args:
            config: Provider order, cache, retry and budget settings
            providers: Pre-built providers by name; built from ``config.providers`` when omitted
            queue: Request queue; built from the retry and concurrency settings when omitted
            cost_tracker: Usage ledger; built from ``config.cost_limits`` when omitted
            shrink_cache: Fuzzy cache for shrink responses
            encouragement_cache: Exact cache for encouragement responses
            monitoring: Prometheus metrics sink
        """
        self.config = config
        if providers is None:
            providers = {AIProvider(c.type): create_provider(c) for c in config.providers}
        self.router = ProviderRouter(providers, config.primary_provider, config.fallback_order)

        self.queue = queue or RequestQueue(
            concurrency=config.queue_concurrency,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            retry_backoff=config.retry_backoff,
        )
        self.cost_tracker = cost_tracker or CostTracker(config.cost_limits)
        self.shrink_cache = shrink_cache or ResponseCache(
            max_size=SHRINK_CACHE_SIZE,
            ttl=config.cache_ttl,
            similarity_threshold=SHRINK_CACHE_THRESHOLD,
        )
        self.encouragement_cache = encouragement_cache or ResponseCache(
            max_size=ENCOURAGEMENT_CACHE_SIZE,
            ttl=config.cache_ttl,
            similarity_threshold=ENCOURAGEMENT_CACHE_THRESHOLD,
        )
        self.monitoring = monitoring or MonitoringService()

        self._cached_responses = 0
        self._failed_requests = 0

        logger.info(
            f"AI service ready: providers={[p.value for p in self.router.providers]}, "
            f"order={[p.value for p in self.router.provider_order()]}"
        )

    @property
    def cache_enabled(self) -> bool:
        return self.config.cache_enabled

    # ------------------------------------------------------------------
    # Shrinking
    # ------------------------------------------------------------------
    async def shrink_task(self, request: TaskShrinkRequest) -> TaskShrinkResponse:
        cached = self._cached_shrink(request)
        if cached is not None:
            return cached

        try:
            response = await self.queue.enqueue(request, self._execute_shrink_task, get_priority(request))
        except Exception as e:
            self._record_failure(e)
            raise

        if self.cache_enabled:
            self.shrink_cache.set(request.task_title, response)
        return response

    async def shrink_task_stream(
        self, request: TaskShrinkRequest, on_chunk: ChunkCallback
    ) -> TaskShrinkResponse:
        """Shrink with streamed text chunks, when the selected provider can stream.

        Streams do not go through the queue: chunks already handed to
        *on_chunk* cannot be replayed, so there is no retry.  Cached answers
        are returned without any chunk.
        """
        cached = self._cached_shrink(request)
        if cached is not None:
            return cached

        try:
            provider = await self.router.get_available_provider()
        except NoProviderAvailableError as e:
            self._record_failure(e)
            raise

        if not provider.supports_streaming:
            logger.debug(f"Provider '{provider.name.value}' cannot stream, using queued path")
            return await self.shrink_task(request)

        try:
            self._ensure_budget(provider, *SHRINK_TOKEN_ESTIMATE)
            response = await provider.stream_shrink_task(request, on_chunk)
        except Exception as e:
            self._record_failure(e)
            raise

        self._record_shrink_usage(provider, request, response, kind="shrink_stream")
        if self.cache_enabled:
            self.shrink_cache.set(request.task_title, response)
        return response

    async def shrink_task_or_offline(self, request: TaskShrinkRequest) -> TaskShrinkResponse:
        """Like :meth:`shrink_task`, but answers from offline patterns when no provider is reachable."""
        try:
            return await self.shrink_task(request)
        except NoProviderAvailableError:
            logger.warning(f"No AI provider available, using offline patterns for '{request.task_title}'")
            return generate_offline_shrink(request.task_title)

    async def _execute_shrink_task(self, request: TaskShrinkRequest) -> TaskShrinkResponse:
        self.monitoring.set_queue_depth(self.queue.pending_count)
        provider = await self.router.get_available_provider()
        self._ensure_budget(provider, *SHRINK_TOKEN_ESTIMATE)

        response = await provider.shrink_task(request)
        self._record_shrink_usage(provider, request, response, kind="shrink")
        return response

    # ------------------------------------------------------------------
    # Encouragement
    # ------------------------------------------------------------------
    async def generate_encouragement(self, request: EncouragementRequest) -> EncouragementResponse:
        cache_key = encouragement_cache_key(request)
        if self.cache_enabled:
            cached = self.encouragement_cache.get(cache_key)
            if cached is not None:
                self._record_cache_hit("encouragement")
                return cached

        try:
            response = await self.queue.enqueue(request, self._execute_encouragement, 0)
        except Exception as e:
            self._record_failure(e)
            raise

        if self.cache_enabled:
            self.encouragement_cache.set(cache_key, response)
        return response

    async def _execute_encouragement(self, request: EncouragementRequest) -> EncouragementResponse:
        self.monitoring.set_queue_depth(self.queue.pending_count)
        provider = await self.router.get_available_provider()
        self._ensure_budget(provider, *ENCOURAGEMENT_TOKEN_ESTIMATE)

        response = await provider.generate_encouragement(request)

        input_tokens = ENCOURAGEMENT_TOKEN_ESTIMATE[0]
        output_tokens = _approx_tokens(response.message)
        cost = provider.estimate_cost(input_tokens, output_tokens)
        self.cost_tracker.record_usage(provider.name, input_tokens, output_tokens, cost)
        self.monitoring.log_request(provider.name.value, "encouragement", cost)
        return response

    # ------------------------------------------------------------------
    # Control and diagnostics
    # ------------------------------------------------------------------
    async def is_available(self) -> bool:
        return await self.router.any_available()

    def pause(self) -> None:
        self.queue.pause()

    def resume(self) -> None:
        self.queue.resume()

    def clear_caches(self) -> None:
        self.shrink_cache.clear()
        self.encouragement_cache.clear()
        logger.info("AI response caches cleared")

    def get_stats(self) -> AIServiceStats:
        """Ledger totals plus cache and failure counters kept by the service."""
        ledger = self.cost_tracker.get_stats()
        return ledger.model_copy(update={
            "total_requests": ledger.total_requests + self._cached_responses,
            "cached_responses": ledger.cached_responses + self._cached_responses,
            "failed_requests": self._failed_requests,
            "cache_stats": {
                "shrink": self.shrink_cache.get_stats(),
                "encouragement": self.encouragement_cache.get_stats(),
            },
        })

    def get_remaining_budget(self) -> RemainingBudget:
        return self.cost_tracker.get_remaining_budget()

    def update_cost_limits(self, **limits: Optional[float]) -> CostLimits:
        return self.cost_tracker.update_limits(**limits)

    # ------------------------------------------------------------------
    def _cached_shrink(self, request: TaskShrinkRequest) -> Optional[TaskShrinkResponse]:
        if not self.cache_enabled:
            return None
        cached = self.shrink_cache.get_similar(request.task_title)
        if cached is not None:
            self._record_cache_hit("shrink")
        return cached

    def _ensure_budget(self, provider: BaseProvider, input_tokens: float, output_tokens: float) -> None:
        estimated = provider.estimate_cost(input_tokens, output_tokens)
        if not self.cost_tracker.can_proceed(estimated):
            raise CostLimitExceededError(self.cost_tracker.check_limits(estimated) or "request")

    def _record_shrink_usage(
        self, provider: BaseProvider, request: TaskShrinkRequest, response: TaskShrinkResponse, kind: str
    ) -> None:
        input_tokens = _approx_tokens(request.task_title)
        output_tokens = _approx_tokens(json.dumps(response.model_dump(mode="json")))
        cost = provider.estimate_cost(input_tokens, output_tokens)
        self.cost_tracker.record_usage(provider.name, input_tokens, output_tokens, cost)
        self.monitoring.log_request(provider.name.value, kind, cost)

    def _record_cache_hit(self, cache: str) -> None:
        self._cached_responses += 1
        self.monitoring.log_cache_hit(cache)
        logger.debug(f"{cache.capitalize()} cache hit")

    def _record_failure(self, error: BaseException) -> None:
        self._failed_requests += 1
        self.monitoring.log_failure(type(error).__name__)
        logger.error(f"AI request failed: {error}")
