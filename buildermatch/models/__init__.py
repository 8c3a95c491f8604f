# =============================================================================
# Models Package - Pydantic V2 Schemas
# =============================================================================
#   - search.py: pipeline objects (plan, candidates, evaluation, state)
#   - requests.py / responses.py: HTTP contract for the thin API layer
#
# These are separate from the ORM models in buildermatch/db/models.py.
# =============================================================================
