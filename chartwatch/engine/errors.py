"""Automation error taxonomy.

Stage errors are caught by the job runner and mapped to a JobLog outcome; only
the runner-level errors (not found, busy) and PersistenceError leave it.
"""


class AutomationError(Exception):
    """Base class. ``kind`` is the category stored on the JobLog row."""

    kind = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(AutomationError):
    kind = "configuration"


class MissingCredentialsError(ConfigurationError):
    pass


class CaptureError(AutomationError):
    kind = "capture"


class AnalysisProviderError(AutomationError):
    kind = "analysis"


class EnrichmentError(AutomationError):
    kind = "enrichment"


class DispatchError(AutomationError):
    kind = "dispatch"


class PersistenceError(AutomationError):
    kind = "persistence"


class ScheduleNotFoundError(AutomationError):
    kind = "not_found"


class ScheduleBusyError(AutomationError):
    kind = "busy"
