# =============================================================================
# API Package - HTTP Route Handlers
# =============================================================================
# Thin routers over the search core: request validation, error mapping and
# response shaping only.
# =============================================================================
