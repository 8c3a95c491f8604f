# =============================================================================
# Builder Match - Agentic Teammate Search
# =============================================================================
# Matches people ("builders") to a natural-language need by combining vector
# similarity search, full-text search and multi-factor ranking, driven by an
# iterative plan → retrieve → evaluate → refine loop.
#
# Package structure:
#   buildermatch/
#   ├── agents/       → planner, executor (retrieval fusion), evaluator and
#   │                    the LangGraph orchestrator (orchestrate_search)
#   ├── api/          → FastAPI route handlers (POST /search/agentic)
#   ├── db/           → Async engine, session helpers and ORM models
#   ├── models/       → Pydantic V2 pipeline, request and response schemas
#   └── services/     → cache, embeddings, LLM providers, candidate store,
#                        state snapshots and the pure ranking engine
# =============================================================================
