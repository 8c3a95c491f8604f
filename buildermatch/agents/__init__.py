# =============================================================================
# Agents Package - Planner, Executor, Evaluator, Orchestrator
# =============================================================================
#   - planner.py: free text -> SearchPlan (model call, deterministic fallback)
#   - executor.py: retrieval fusion, filtering, hydration, ranking
#   - evaluator.py: deterministic quality metrics + refinement decision
#   - orchestrator.py: LangGraph state machine, the public entry point
# =============================================================================
