"""
Cost tracking and budget enforcement for AI provider usage.

The tracker keeps an append-only ledger of :class:`~ai.types.UsageRecord`
entries (pruned after ``RETENTION_DAYS``) and answers two questions:

1. May a request with a given estimated cost proceed? (``can_proceed``)
2. How much has been spent today / this month? (local calendar periods)

Enforcement order:
1. Per-request limit - the estimate alone must fit
2. Daily limit - today's spend plus the estimate must fit
3. Monthly limit - this month's spend plus the estimate must fit
"""

import time
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from ai.types import (
    AIProvider,
    AIServiceStats,
    CostLimits,
    DailyUsage,
    RemainingBudget,
    UsageRecord,
)
from core.logging import logger

RETENTION_DAYS = 90
WARNING_THRESHOLD = 0.8  # 80%

LimitWarningCallback = Callable[[str, float, float], None]
LimitExceededCallback = Callable[[str], None]


class CostTracker:
    """Usage ledger with daily, monthly and per-request budget checks."""

    def __init__(
        self,
        limits: Optional[CostLimits] = None,
        on_limit_warning: Optional[LimitWarningCallback] = None,
        on_limit_exceeded: Optional[LimitExceededCallback] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            limits: Spending ceilings; unset axes are unbounded
            on_limit_warning: Called as ``(period, usage, limit)`` when spend reaches 80% of a limit
            on_limit_exceeded: Called with ``"request"``, ``"daily"`` or ``"monthly"`` on rejection
            clock: Returns the current epoch time in seconds
        """
        self._limits = limits or CostLimits()
        self._on_limit_warning = on_limit_warning
        self._on_limit_exceeded = on_limit_exceeded
        self._clock = clock
        self._records: List[UsageRecord] = []

    @property
    def limits(self) -> CostLimits:
        return self._limits

    def can_proceed(self, estimated_cost: float) -> bool:
        """
        Check whether a request with the estimated cost fits every budget.

        Returns False (and fires ``on_limit_exceeded``) on the first limit
        that would be breached.
        """
        rejected = self.check_limits(estimated_cost)
        if rejected is None:
            return True

        logger.warning(f"Cost limit exceeded ({rejected}) for estimated cost ${estimated_cost:.4f}")
        if self._on_limit_exceeded:
            self._on_limit_exceeded(rejected)
        return False

    def check_limits(self, estimated_cost: float) -> Optional[str]:
        """Name of the limit *estimated_cost* would breach, or None. No side effects."""
        limits = self._limits
        if limits.per_request_limit is not None and estimated_cost > limits.per_request_limit:
            return "request"
        if limits.daily_limit is not None and self.get_daily_usage() + estimated_cost > limits.daily_limit:
            return "daily"
        if limits.monthly_limit is not None and self.get_monthly_usage() + estimated_cost > limits.monthly_limit:
            return "monthly"
        return None

    def record_usage(
        self,
        provider: AIProvider,
        input_tokens: float,
        output_tokens: float,
        cost: float,
        cached: bool = False,
    ) -> UsageRecord:
        """Append a usage record, fire threshold warnings, then prune old records."""
        record = UsageRecord(
            timestamp=self._clock(),
            provider=AIProvider(provider),
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
            cached=cached,
        )
        self._records.append(record)

        self._check_warnings()
        self._prune_old_records()
        return record

    def get_daily_usage(self) -> float:
        start_of_day = self._start_of_day()
        return sum(r.cost for r in self._records if r.timestamp >= start_of_day)

    def get_monthly_usage(self) -> float:
        start_of_month = self._start_of_month()
        return sum(r.cost for r in self._records if r.timestamp >= start_of_month)

    def get_remaining_budget(self) -> RemainingBudget:
        daily = self._limits.daily_limit
        monthly = self._limits.monthly_limit
        return RemainingBudget(
            daily=max(0.0, daily - self.get_daily_usage()) if daily is not None else None,
            monthly=max(0.0, monthly - self.get_monthly_usage()) if monthly is not None else None,
        )

    def get_stats(self) -> AIServiceStats:
        requests_by_provider: Dict[AIProvider, int] = {provider: 0 for provider in AIProvider}
        total_tokens = 0.0
        total_cost = 0.0
        cached_count = 0

        for record in self._records:
            requests_by_provider[record.provider] += 1
            total_tokens += record.input_tokens + record.output_tokens
            total_cost += record.cost
            if record.cached:
                cached_count += 1

        return AIServiceStats(
            total_requests=len(self._records),
            cached_responses=cached_count,
            total_tokens_used=total_tokens,
            estimated_cost=total_cost,
            requests_by_provider=requests_by_provider,
        )

    def get_usage_by_day(self, days: int = 30) -> List[DailyUsage]:
        """Spend and request count per local calendar date, oldest first."""
        cutoff = self._clock() - days * 24 * 60 * 60
        totals: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0])

        for record in self._records:
            if record.timestamp < cutoff:
                continue
            date_str = datetime.fromtimestamp(record.timestamp).date().isoformat()
            totals[date_str][0] += record.cost
            totals[date_str][1] += 1

        return [
            DailyUsage(date=date_str, cost=cost, requests=int(requests))
            for date_str, (cost, requests) in sorted(totals.items())
        ]

    def update_limits(self, **limits: Optional[float]) -> CostLimits:
        """Replace individual limits, e.g. ``update_limits(daily_limit=5.0)``."""
        self._limits = CostLimits.model_validate({**self._limits.model_dump(), **limits})
        return self._limits

    def export_records(self) -> List[UsageRecord]:
        return list(self._records)

    def import_records(self, records: Iterable[UsageRecord]) -> None:
        self._records = [UsageRecord.model_validate(r) for r in records]
        self._prune_old_records()

    # ------------------------------------------------------------------
    def _check_warnings(self) -> None:
        for period, limit, usage_of in (
            ("daily", self._limits.daily_limit, self.get_daily_usage),
            ("monthly", self._limits.monthly_limit, self.get_monthly_usage),
        ):
            if not limit:
                continue
            usage = usage_of()
            if usage >= limit * WARNING_THRESHOLD:
                logger.warning(f"{period.capitalize()} AI spend ${usage:.4f} reached {usage / limit:.0%} of ${limit:.2f}")
                if self._on_limit_warning:
                    self._on_limit_warning(period, usage, limit)

    def _prune_old_records(self) -> None:
        cutoff = self._clock() - RETENTION_DAYS * 24 * 60 * 60
        self._records = [r for r in self._records if r.timestamp >= cutoff]

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock())

    def _start_of_day(self) -> float:
        now = self._now()
        return datetime(now.year, now.month, now.day).timestamp()

    def _start_of_month(self) -> float:
        now = self._now()
        return datetime(now.year, now.month, 1).timestamp()
