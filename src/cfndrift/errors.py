"""Exceptions that abort a drift run."""


class DriftError(Exception):
    """Base class for fatal drift run errors."""


class ConfigError(DriftError):
    """The configuration file could not be read or has the wrong shape."""


class TemplateParseError(DriftError):
    """The stack template body is not valid JSON or YAML."""


class PropertyDocumentError(DriftError):
    """An actual or expected properties document is not valid JSON."""


class DetectionFailedError(DriftError):
    """CloudFormation reported DETECTION_FAILED for the stack."""

    def __init__(self, stack_name: str, reason: str | None):
        super().__init__(f"Drift detection failed for {stack_name}: {reason or 'unknown reason'}")
        self.stack_name = stack_name
        self.reason = reason


class DetectionTimeoutError(DriftError):
    """Drift detection did not complete within the allowed poll attempts."""


class DriftTimeoutError(DriftError):
    """The overall run deadline passed before the run finished."""
