"""Request, response and bookkeeping models for the AI orchestration layer."""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class AIProvider(str, Enum):
    """Backends the orchestrator can talk to."""
    CLAUDE = "claude"
    OPENAI = "openai"
    OLLAMA = "ollama"


class Level(str, Enum):
    """Self-reported mood or energy."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Difficulty(str, Enum):
    TRIVIAL = "trivial"
    EASY = "easy"
    MEDIUM = "medium"


class EncouragementContext(str, Enum):
    START = "start"
    PROGRESS = "progress"
    COMPLETE = "complete"
    STRUGGLE = "struggle"
    RETURN = "return"


class Tone(str, Enum):
    GENTLE = "gentle"
    CELEBRATORY = "celebratory"
    UNDERSTANDING = "understanding"
    MOTIVATING = "motivating"


class TaskShrinkRequest(BaseModel):
    """Ask for an overwhelming task to be broken into small steps."""
    task_title: str
    task_description: Optional[str] = None
    current_mood: Optional[Level] = None
    energy_level: Optional[Level] = None
    available_time: Optional[int] = Field(None, description="Minutes the user has available")
    previous_attempts: int = 0
    user_context: Optional[str] = None


class ShrunkTask(BaseModel):
    """One suggested sub-step."""
    title: str
    description: Optional[str] = None
    estimated_minutes: int = 10
    difficulty: Difficulty = Difficulty.EASY
    motivation: Optional[str] = None


class TaskShrinkResponse(BaseModel):
    original_task: str
    shrunk_tasks: List[ShrunkTask] = Field(default_factory=list)
    reasoning: Optional[str] = None
    encouragement: Optional[str] = None


class EncouragementRequest(BaseModel):
    context: EncouragementContext
    task_title: Optional[str] = None
    user_name: Optional[str] = None
    streak_days: int = 0
    completed_today: int = 0
    previous_messages: List[str] = Field(default_factory=list)
    mood: Optional[Level] = None


class EncouragementResponse(BaseModel):
    message: str
    tone: Tone = Tone.GENTLE
    emoji: Optional[str] = None


class CostLimits(BaseModel):
    """Spending ceilings in USD; ``None`` means unbounded on that axis."""
    daily_limit: Optional[float] = Field(None, ge=0)
    monthly_limit: Optional[float] = Field(None, ge=0)
    per_request_limit: Optional[float] = Field(None, ge=0)


class UsageRecord(BaseModel):
    """One metered provider call. Never mutated after creation."""
    model_config = {"frozen": True}

    timestamp: float
    provider: AIProvider
    input_tokens: float
    output_tokens: float
    cost: float
    cached: bool = False


class RemainingBudget(BaseModel):
    daily: Optional[float] = None
    monthly: Optional[float] = None


class DailyUsage(BaseModel):
    date: str
    cost: float
    requests: int


class CacheStats(BaseModel):
    size: int
    total_hits: int
    hit_rate: float


class AIServiceStats(BaseModel):
    """Diagnostics surface for a settings screen."""
    total_requests: int = 0
    cached_responses: int = 0
    failed_requests: int = 0
    total_tokens_used: float = 0
    estimated_cost: float = 0.0
    requests_by_provider: Dict[AIProvider, int] = Field(
        default_factory=lambda: {provider: 0 for provider in AIProvider}
    )
    cache_stats: Dict[str, CacheStats] = Field(default_factory=dict)
