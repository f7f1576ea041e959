"""Multi-step agent execution and planning.

A request is first planned (``planner``), then executed either by one bounded
function-calling loop (``loop``) or step by step (``multi_step``). Both paths
share the per-chat ``ExecutionContext`` (``context``) and the tool registry
(``tool``). ``AgentOrchestrator`` in ``orchestrator`` is the entry point;
``create_orchestrator`` in ``factory`` wires it together.
"""
