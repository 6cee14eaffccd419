"""Stage agents and the orchestrator that sequences them"""

from .analysis_agent import AnalysisAgent
from .base_agent import AgentConfig, AgentParseError, BaseAgent
from .fix_generation_agent import FixGenerationAgent
from .investigation_agent import InvestigationAgent
from .orchestrator import AgentOrchestrator, create_orchestrator
from .review_agent import ReviewAgent
from .single_shot import SingleShotRepairAgent

__all__ = [
    "AgentConfig",
    "AgentOrchestrator",
    "AgentParseError",
    "AnalysisAgent",
    "BaseAgent",
    "FixGenerationAgent",
    "InvestigationAgent",
    "ReviewAgent",
    "SingleShotRepairAgent",
    "create_orchestrator",
]
