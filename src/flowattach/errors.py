"""Exception taxonomy for flowattach."""

from __future__ import annotations


class FlowAttachError(Exception):
    """Base exception for every error raised by flowattach."""


class ValidationRejected(FlowAttachError):
    """Raised when a file fails the type or size policy."""


class ConfigurationError(FlowAttachError):
    """Base exception for configuration problems."""


class ConfigurationMissing(ConfigurationError):
    """Raised when remote-mode prerequisites are absent."""


class InvalidSetting(ConfigurationError):
    """Raised when a raw configuration value cannot be interpreted."""


class RemoteCallFailed(FlowAttachError):
    """Raised on a non-2xx status, ``success=false`` or an unparsable body."""


class RemoteCallTimedOut(FlowAttachError):
    """Raised when a flow call exceeds its timeout."""


class UnexpectedResponseShape(FlowAttachError):
    """Raised when a flow response is missing the fields we need."""


class LocalReadFailed(FlowAttachError):
    """Raised when a local file cannot be read into memory."""
