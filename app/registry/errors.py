"""Typed failures raised by the document registry.

Every error derives from :class:`RegistryError`, itself a ``ValueError``, so
callers that already treat ``ValueError`` as a validation failure keep doing
so. ``code`` and ``status_code`` are what the JSON blueprint reports.
"""
from __future__ import annotations


class RegistryError(ValueError):
    code = "registry_error"
    status_code = 400


class InvalidConfigError(RegistryError):
    code = "invalid_config"


class DocumentNotFoundError(RegistryError):
    code = "document_not_found"
    status_code = 404


class StepNotFoundError(RegistryError):
    code = "step_not_found"
    status_code = 404


class InvalidTransitionError(RegistryError):
    code = "invalid_transition"
    status_code = 409


class AlreadyArchivedError(RegistryError):
    code = "already_archived"
    status_code = 409


class NotResolvableError(RegistryError):
    code = "not_resolvable"
    status_code = 409


class StepAlreadyCompletedError(RegistryError):
    code = "step_already_completed"
    status_code = 409


class InvalidParentStepError(RegistryError):
    code = "invalid_parent_step"
    status_code = 409


class SelfConnectionError(RegistryError):
    code = "self_connection"
    status_code = 409


class UnregisteredDocumentError(RegistryError):
    code = "unregistered_document"
    status_code = 409


class DuplicateConnectionError(RegistryError):
    code = "duplicate_connection"
    status_code = 409


class InvalidActionError(RegistryError):
    code = "invalid_action"


class ResolutionRequiredError(RegistryError):
    code = "resolution_required"


class CycleDetectedError(RegistryError):
    # malformed routing tree; never expected from the public operations
    code = "cycle_detected"
    status_code = 500
