"""
Structured errors for the Car Studio backend.
Each error carries a stable `kind` and the HTTP status the API answers with.
"""

from typing import Dict


class CarStudioError(Exception):
    """Base class: a kind plus a short human-readable message."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.kind, "message": self.message}


class MissingMaskError(CarStudioError):
    """A required segmentation mask is absent and no detection fallback is allowed."""

    kind = "missing_mask"
    status_code = 400


class UnknownSelectionError(CarStudioError):
    """Wheel or paint identifier outside the catalog."""

    kind = "unknown_selection"
    status_code = 400


class DimensionMismatchError(CarStudioError):
    """Two rasters that must share a pixel grid do not (upstream alignment defect)."""

    kind = "dimension_mismatch"
    status_code = 500


class FormatError(CarStudioError):
    """Malformed or undecodable image input."""

    kind = "format_error"
    status_code = 400


class ExternalCollaboratorError(CarStudioError):
    """Segmentation, generation or download failed or returned an unexpected payload."""

    kind = "external_collaborator"
    status_code = 502


class CollaboratorAuthError(ExternalCollaboratorError):
    """The model API rejected our credentials. Never retried."""

    kind = "collaborator_auth"
    status_code = 401


class CollaboratorTimeoutError(ExternalCollaboratorError):
    kind = "collaborator_timeout"
    status_code = 504


class ConfigError(CarStudioError):
    kind = "config_error"
    status_code = 503
