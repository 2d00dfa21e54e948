"""AI orchestration layer: providers, caching, cost control and request queueing."""

from ai.config import OrchestratorConfig, load_orchestrator_config
from ai.cost_tracker import CostTracker
from ai.service import AIService

__all__ = ["AIService", "CostTracker", "OrchestratorConfig", "load_orchestrator_config"]
