# =============================================================================
# Exceptions
# =============================================================================
#
# Provider failures (embedding, model, a single retrieval branch) are
# recovered inside the pipeline. Only RetrievalError is allowed to escape
# orchestrate_search(), because no result set can be built without hydrated
# candidates.
# =============================================================================


class BuilderMatchError(Exception):
    """Base class for all errors raised by the package."""


class ProviderUnavailableError(BuilderMatchError):
    """A provider is not configured (missing API key, provider disabled)."""


class StructuredOutputError(BuilderMatchError):
    """
    The model returned something that is not valid for the requested schema.

    Carries the raw text so callers can log what came back.
    """

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class RetrievalError(BuilderMatchError):
    """The candidate store failed at a stage the pipeline cannot skip."""
