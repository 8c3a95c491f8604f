# =============================================================================
# Services Package - External Collaborators & Pure Ranking
# =============================================================================
#   - cache.py: key/value cache (Redis, in-process)
#   - embedder.py: query embeddings, cached by content hash
#   - llm.py: multi-provider LLM abstraction + structured output
#   - candidate_store.py: vector / lexical retrieval, filters, hydration
#   - state_sink.py: best-effort orchestration state snapshots
#   - ranking.py: multi-factor scoring and diversity (pure, no I/O)
# =============================================================================
