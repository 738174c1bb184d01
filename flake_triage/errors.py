"""Exceptions raised across flake-triage."""


class FlakeTriageError(Exception):
    """Base class for flake-triage errors."""


class ConfigError(FlakeTriageError):
    """Raised when the configuration is invalid or incomplete.

    Configuration errors are fatal and abort the run before any test executes.
    """


class ManifestFetchError(FlakeTriageError):
    """Raised when the quarantine manifest cannot be fetched or parsed."""


class UploadError(FlakeTriageError):
    """Raised when test results cannot be uploaded to the backend."""


class DuplicateAttemptError(FlakeTriageError):
    """An attempt received more failure reports than can be reconciled.

    Never raised. The attempt tracker logs it as an anomaly and keeps the most
    recent merge.
    """
