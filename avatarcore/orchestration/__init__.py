from .engine import OrchestrationEngine
from .engine_config import EngineConfig
from .settle import BranchOutcome, settle

__all__ = ["BranchOutcome", "EngineConfig", "OrchestrationEngine", "settle"]
