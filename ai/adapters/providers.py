"""AI Provider Adapters for the text-generation backends.

Every adapter turns a :class:`~ai.types.TaskShrinkRequest` or
:class:`~ai.types.EncouragementRequest` into a backend-specific prompt, calls
the backend over HTTP and parses the reply.  Parsing is defensive: a reply
that holds no usable JSON is downgraded to a conservative fallback result
instead of raising, so a malformed upstream response never reaches the
orchestrator as an exception.  Transport and HTTP status errors *are* raised
so the request queue can decide whether to retry.
"""
import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ai.config import (
    ClaudeProviderConfig,
    OllamaProviderConfig,
    OpenAIProviderConfig,
    ProviderConfig,
)
from ai.types import (
    AIProvider,
    Difficulty,
    EncouragementRequest,
    EncouragementResponse,
    ShrunkTask,
    TaskShrinkRequest,
    TaskShrinkResponse,
    Tone,
)
from core.errors import ConfigError
from core.logging import logger

ChunkCallback = Callable[[str], None]


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """Return the first balanced ``{...}`` object embedded in *text*, or None.

    Handles markdown fences and prose around the JSON; braces inside string
    literals are ignored while matching.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    try:
                        parsed = json.loads(text[start:index + 1])
                    except json.JSONDecodeError:
                        break
                    if isinstance(parsed, dict):
                        return parsed
                    break
        start = text.find("{", start + 1)
    return None


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First non-empty value among camelCase / snake_case spellings."""
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return default


def _enum_or_default(enum_cls, value: Any, default):
    try:
        return enum_cls(value)
    except (ValueError, TypeError):
        return default


class BaseProvider(ABC):
    """Base class for AI providers."""

    name: AIProvider
    supports_streaming = False

    # Defaults used when the backend omits a field
    default_step_title = "Untitled step"
    default_step_minutes = 10

    def __init__(self, model: str, base_url: str, timeout: float = 30.0):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------
    async def shrink_task(self, request: TaskShrinkRequest) -> TaskShrinkResponse:
        text = await self._generate(self.build_shrink_prompt(request), max_tokens=1024, temperature=0.7)
        return self.parse_shrink_response(request.task_title, text)

    async def stream_shrink_task(
        self, request: TaskShrinkRequest, on_chunk: ChunkCallback
    ) -> TaskShrinkResponse:
        """Shrink a task, passing text chunks to *on_chunk* as they arrive."""
        if not self.supports_streaming:
            raise NotImplementedError(f"{self.name.value} does not support streaming")
        text = await self._generate_stream(
            self.build_shrink_prompt(request), on_chunk, max_tokens=1024, temperature=0.7
        )
        return self.parse_shrink_response(request.task_title, text)

    async def generate_encouragement(self, request: EncouragementRequest) -> EncouragementResponse:
        text = await self._generate(self.build_encouragement_prompt(request), max_tokens=256, temperature=0.8)
        return self.parse_encouragement_response(text)

    @abstractmethod
    def estimate_cost(self, input_tokens: float, output_tokens: float) -> float:
        """Estimated USD cost for the given token counts."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap liveness probe; never raises."""

    # ------------------------------------------------------------------
    # Backend calls
    # ------------------------------------------------------------------
    @abstractmethod
    async def _generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        """Single-shot completion returning the raw text."""

    async def _generate_stream(
        self, prompt: str, on_chunk: ChunkCallback, max_tokens: int, temperature: float
    ) -> str:
        raise NotImplementedError

    def _json_body(self, response: httpx.Response) -> Dict[str, Any]:
        """Decoded JSON object body, or ``{}`` when the body is not a JSON object."""
        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"{self.name.value}: response body is not JSON: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"{self.name.value}: expected a JSON object, got {type(data).__name__}")
            return {}
        return data

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------
    def build_shrink_prompt(self, request: TaskShrinkRequest) -> str:
        parts = [
            "You are a supportive assistant helping neurodivergent people break overwhelming tasks into small, doable pieces.",
            "",
            f'Task to shrink: "{request.task_title}"',
        ]
        if request.task_description:
            parts.append(f"Description: {request.task_description}")
        if request.current_mood:
            parts.append(f"Current mood: {request.current_mood.value}")
        if request.energy_level:
            parts.append(f"Energy level: {request.energy_level.value}")
        if request.available_time:
            parts.append(f"Available time: {request.available_time} minutes")
        if request.previous_attempts > 0:
            parts.append(f"Previous attempts: {request.previous_attempts} (this has been hard before)")
        if request.user_context:
            parts.append(f"Additional context: {request.user_context}")

        parts += [
            "",
            "Split the task into 2-4 subtasks that are concrete, take 5-15 minutes each,",
            "feel achievable on a low-energy day and build momentum through small wins.",
            "",
            "Respond in JSON only:",
            '{"shrunkTasks": [{"title": "First small step", "description": "Brief explanation", '
            '"estimatedMinutes": 5, "difficulty": "trivial|easy|medium", "motivation": "Why this helps"}], '
            '"reasoning": "Why this breakdown works", "encouragement": "A kind message"}',
        ]
        return "\n".join(parts)

    def build_encouragement_prompt(self, request: EncouragementRequest) -> str:
        parts = [
            "You are a warm companion for someone living with ADHD or executive dysfunction.",
            "Write a brief, genuine encouragement message.",
            "",
            f"Context: {request.context.value}",
        ]
        if request.task_title:
            parts.append(f"Task: {request.task_title}")
        if request.user_name:
            parts.append(f"Name: {request.user_name}")
        if request.streak_days > 0:
            parts.append(f"Current streak: {request.streak_days} days")
        if request.completed_today > 0:
            parts.append(f"Tasks completed today: {request.completed_today}")
        if request.mood:
            parts.append(f"Current mood: {request.mood.value}")
        if request.previous_messages:
            parts.append("Avoid repeating: " + " | ".join(request.previous_messages[-3:]))

        parts += [
            "",
            "Keep it to 1-2 sentences, not patronizing, focused on the present moment.",
            "",
            "Respond in JSON only:",
            '{"message": "Your encouragement", "tone": "gentle|celebratory|understanding|motivating", '
            '"emoji": "optional single emoji"}',
        ]
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------
    def parse_shrink_response(self, original_task: str, text: str) -> TaskShrinkResponse:
        data = extract_json(text or "")
        raw_tasks = _pick(data, "shrunkTasks", "shrunk_tasks") if data else None
        if not isinstance(raw_tasks, list):
            logger.warning(f"{self.name.value}: no usable JSON in shrink response, using fallback")
            return self.fallback_shrink(original_task)

        try:
            steps = [self._coerce_step(raw) for raw in raw_tasks if isinstance(raw, dict)]
            if not steps:
                raise ValueError("response contained no steps")
            return TaskShrinkResponse(
                original_task=original_task,
                shrunk_tasks=steps,
                reasoning=_pick(data, "reasoning"),
                encouragement=_pick(data, "encouragement"),
            )
        except (ValidationError, TypeError, ValueError, OverflowError) as e:
            logger.warning(f"{self.name.value}: failed to parse shrink response: {e}")
            return self.fallback_shrink(original_task)

    def parse_encouragement_response(self, text: str) -> EncouragementResponse:
        data = extract_json(text or "")
        if not data:
            logger.warning(f"{self.name.value}: no usable JSON in encouragement response, using fallback")
            return self.fallback_encouragement()

        tone = _pick(data, "tone")
        try:
            return EncouragementResponse(
                message=str(_pick(data, "message", default="You've got this!")),
                tone=_enum_or_default(Tone, tone, Tone.GENTLE),
                emoji=_pick(data, "emoji"),
            )
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning(f"{self.name.value}: failed to parse encouragement response: {e}")
            return self.fallback_encouragement()

    def _coerce_step(self, raw: Dict[str, Any]) -> ShrunkTask:
        difficulty = _pick(raw, "difficulty")
        try:
            minutes = int(_pick(raw, "estimatedMinutes", "estimated_minutes", default=self.default_step_minutes))
        except (TypeError, ValueError, OverflowError):
            minutes = self.default_step_minutes
        return ShrunkTask(
            title=str(_pick(raw, "title", default=self.default_step_title)),
            description=_pick(raw, "description"),
            estimated_minutes=minutes if minutes > 0 else self.default_step_minutes,
            difficulty=_enum_or_default(Difficulty, difficulty, Difficulty.EASY),
            motivation=_pick(raw, "motivation"),
        )

    def fallback_shrink(self, original_task: str) -> TaskShrinkResponse:
        return TaskShrinkResponse(
            original_task=original_task,
            shrunk_tasks=[
                ShrunkTask(
                    title=f"Start with: {original_task}",
                    estimated_minutes=10,
                    difficulty=Difficulty.EASY,
                    motivation="Just begin, you can do this!",
                )
            ],
            encouragement="Every small step counts.",
        )

    def fallback_encouragement(self) -> EncouragementResponse:
        return EncouragementResponse(message="You're doing great. One step at a time.", tone=Tone.GENTLE)


class ClaudeProvider(BaseProvider):
    """Anthropic API provider (Claude 3.5 Sonnet, Haiku, Opus)."""

    name = AIProvider.CLAUDE
    supports_streaming = True

    # Cost per 1M tokens (USD)
    PRICING = {
        "claude-3-5-sonnet-20241022": {"input": 3.0, "output": 15.0},
        "claude-3-5-haiku-20241022": {"input": 1.0, "output": 5.0},
        "claude-3-opus-20240229": {"input": 15.0, "output": 75.0},
    }
    DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
    API_VERSION = "2023-06-01"

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL,
                 base_url: str = "https://api.anthropic.com/v1", timeout: float = 30.0):
        super().__init__(model=model, base_url=base_url, timeout=timeout)
        self.api_key = api_key

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.API_VERSION,
            "Content-Type": "application/json",
        }

    def _payload(self, prompt: str, max_tokens: int, temperature: float, stream: bool = False) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def _generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    f"{self.base_url}/messages",
                    headers=self._headers(),
                    json=self._payload(prompt, max_tokens, temperature),
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Anthropic API error: {e}")
                raise

            data = self._json_body(response)
            blocks = data.get("content")
            if not isinstance(blocks, list):
                return ""
            return "".join(
                block["text"] for block in blocks
                if isinstance(block, dict) and isinstance(block.get("text"), str)
            )

    async def _generate_stream(
        self, prompt: str, on_chunk: ChunkCallback, max_tokens: int, temperature: float
    ) -> str:
        full_text: List[str] = []
        async with httpx.AsyncClient() as client:
            try:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/messages",
                    headers=self._headers(),
                    json=self._payload(prompt, max_tokens, temperature, stream=True),
                    timeout=self.timeout,
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        try:
                            event = json.loads(line[len("data:"):].strip())
                        except json.JSONDecodeError:
                            continue
                        if event.get("type") != "content_block_delta":
                            continue
                        chunk = (event.get("delta") or {}).get("text")
                        if chunk:
                            full_text.append(chunk)
                            on_chunk(chunk)
            except httpx.HTTPError as e:
                logger.error(f"Anthropic streaming error: {e}")
                raise
        return "".join(full_text)

    def estimate_cost(self, input_tokens: float, output_tokens: float) -> float:
        pricing = self.PRICING.get(self.model, self.PRICING[self.DEFAULT_MODEL])
        return (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000

    async def is_available(self) -> bool:
        # Listing models validates the key without spending tokens
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{self.base_url}/models", headers=self._headers(), timeout=5.0)
                return response.status_code == 200
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Anthropic availability probe failed: {e}")
            return False


class OpenAIProvider(BaseProvider):
    """OpenAI API provider (GPT-4o, GPT-4o mini)."""

    name = AIProvider.OPENAI

    # Cost per 1M tokens (USD)
    PRICING = {
        "gpt-4o-mini": {"input": 0.15, "output": 0.6},
        "gpt-4o": {"input": 2.5, "output": 10.0},
        "gpt-4-turbo": {"input": 10.0, "output": 30.0},
    }
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL,
                 base_url: str = "https://api.openai.com/v1", timeout: float = 30.0):
        super().__init__(model=model, base_url=base_url, timeout=timeout)
        self.api_key = api_key

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        async with httpx.AsyncClient() as client:
            payload = {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": max_tokens,
                "temperature": temperature,
                "response_format": {"type": "json_object"},
            }
            try:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._headers(),
                    json=payload,
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"OpenAI API error: {e}")
                raise

            choices = self._json_body(response).get("choices")
            first = choices[0] if isinstance(choices, list) and choices else None
            message = first.get("message") if isinstance(first, dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            return content if isinstance(content, str) else ""

    def estimate_cost(self, input_tokens: float, output_tokens: float) -> float:
        pricing = self.PRICING.get(self.model, self.PRICING[self.DEFAULT_MODEL])
        return (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000

    async def is_available(self) -> bool:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{self.base_url}/models", headers=self._headers(), timeout=5.0)
                return response.status_code == 200
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"OpenAI availability probe failed: {e}")
            return False


class OllamaProvider(BaseProvider):
    """Ollama local model provider (Llama, Mistral, ...)."""

    name = AIProvider.OLLAMA
    supports_streaming = True
    default_step_title = "Small step"
    default_step_minutes = 5

    def __init__(self, base_url: str = "http://localhost:11434", model: str = "llama3.2",
                 timeout: float = 60.0):
        super().__init__(model=model, base_url=base_url, timeout=timeout)

    def _payload(self, prompt: str, max_tokens: int, temperature: float, stream: bool) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": prompt,
            "stream": stream,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }

    async def _generate(self, prompt: str, max_tokens: int, temperature: float) -> str:
        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    f"{self.base_url}/api/generate",
                    json=self._payload(prompt, max_tokens, temperature, stream=False),
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error(f"Ollama API error: {e}")
                raise

            text = self._json_body(response).get("response")
            return text if isinstance(text, str) else ""

    async def _generate_stream(
        self, prompt: str, on_chunk: ChunkCallback, max_tokens: int, temperature: float
    ) -> str:
        full_text: List[str] = []
        async with httpx.AsyncClient() as client:
            try:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/api/generate",
                    json=self._payload(prompt, max_tokens, temperature, stream=True),
                    timeout=self.timeout,
                ) as response:
                    response.raise_for_status()
                    # One JSON object per line
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            chunk = json.loads(line).get("response", "")
                        except json.JSONDecodeError:
                            continue
                        if chunk:
                            full_text.append(chunk)
                            on_chunk(chunk)
            except httpx.HTTPError as e:
                logger.error(f"Ollama streaming error: {e}")
                raise
        return "".join(full_text)

    def build_shrink_prompt(self, request: TaskShrinkRequest) -> str:
        # Small local models do better with a terse prompt
        parts = [
            "You help neurodivergent people break down tasks.",
            "",
            f'Task: "{request.task_title}"',
        ]
        if request.task_description:
            parts.append(f"Description: {request.task_description}")
        if request.current_mood:
            parts.append(f"Mood: {request.current_mood.value}")
        if request.available_time:
            parts.append(f"Available time: {request.available_time} minutes")
        parts += [
            "",
            "Break this into 2-3 small steps (5-10 min each).",
            "",
            "JSON response only:",
            '{"shrunkTasks":[{"title":"step","estimatedMinutes":5,"difficulty":"easy"}],"encouragement":"message"}',
        ]
        return "\n".join(parts)

    def build_encouragement_prompt(self, request: EncouragementRequest) -> str:
        parts = [
            "Write one sentence of encouragement for someone with ADHD.",
            f"Context: {request.context.value}",
        ]
        if request.task_title:
            parts.append(f"Task: {request.task_title}")
        parts += ["", 'JSON response: {"message":"encouragement","tone":"gentle"}']
        return "\n".join(parts)

    def fallback_shrink(self, original_task: str) -> TaskShrinkResponse:
        return TaskShrinkResponse(
            original_task=original_task,
            shrunk_tasks=[
                ShrunkTask(title=f"Just start: {original_task}", estimated_minutes=5, difficulty=Difficulty.TRIVIAL)
            ],
            encouragement="You can do this!",
        )

    def fallback_encouragement(self) -> EncouragementResponse:
        return EncouragementResponse(message="One step at a time.", tone=Tone.GENTLE)

    def estimate_cost(self, input_tokens: float, output_tokens: float) -> float:
        # Local models are free
        return 0.0

    async def is_available(self) -> bool:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{self.base_url}/api/tags", timeout=5.0)
                return response.status_code == 200
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"Ollama availability probe failed: {e}")
            return False


# Provider factory
def create_provider(config: ProviderConfig) -> BaseProvider:
    """Create a provider instance from its configuration variant."""
    if isinstance(config, ClaudeProviderConfig):
        return ClaudeProvider(api_key=config.api_key, model=config.model,
                              base_url=config.base_url, timeout=config.timeout)
    if isinstance(config, OpenAIProviderConfig):
        return OpenAIProvider(api_key=config.api_key, model=config.model,
                              base_url=config.base_url, timeout=config.timeout)
    if isinstance(config, OllamaProviderConfig):
        return OllamaProvider(base_url=config.base_url, model=config.model, timeout=config.timeout)
    raise ConfigError(f"Unknown provider config: {type(config).__name__}")
