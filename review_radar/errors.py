"""
Error taxonomy.

Each error is fatal only to the scope that raised it: a FetchError or AnalysisError
ends one app's pipeline, a ComparisonError or AccessDeniedError ends the comparison
step, and the orchestrator turns anything else into a final error status.
"""


class ReviewRadarError(Exception):
    """Base class for every error this package raises on purpose."""


class FetchError(ReviewRadarError):
    """App metadata could not be fetched from the store."""

    def __init__(self, app_id: str, message: str):
        self.app_id = app_id
        super().__init__(f"Could not fetch app {app_id}: {message}")


class AnalysisError(ReviewRadarError):
    """The LLM could not produce a valid analysis for an app."""

    def __init__(self, app_name: str, message: str):
        self.app_name = app_name
        super().__init__(f"Analysis failed for {app_name}: {message}")


class ComparisonError(ReviewRadarError):
    pass


class AccessDeniedError(ReviewRadarError):
    """The acting user has not analyzed (and so may not read) some of these apps."""

    def __init__(self, app_ids: list[str]):
        self.app_ids = list(app_ids)
        super().__init__(
            f"You don't have access to the following apps: {', '.join(self.app_ids)}"
        )


class CallTimeoutError(ReviewRadarError):
    def __init__(self, operation: str, seconds: float):
        self.operation = operation
        self.seconds = seconds
        super().__init__(f"{operation} timed out after {seconds:g}s")
