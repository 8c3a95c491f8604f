# =============================================================================
# Database Package
# =============================================================================
# Async SQLAlchemy engine/session helpers and the ORM models the search core
# reads (builders, skills, projects) and writes (agent_states).
# =============================================================================
