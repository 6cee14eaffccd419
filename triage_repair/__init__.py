def __getattr__(name):
    if name in ("AgentOrchestrator", "create_orchestrator"):
        from .agents import orchestrator
        return getattr(orchestrator, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = ['AgentOrchestrator', 'create_orchestrator']
