"""
BrokerDesk - Verification workflow errors

NotFound / TypeMismatch / AlreadyApproved / InvalidStatus surface as 4xx.
NoCreatorResolvable / ValidationFailed surface as 5xx with diagnostic detail.
NotificationFailed never leaves the notification gateway.
"""

from typing import Any, Dict, List, Optional


class WorkflowError(Exception):
    """Base class for errors raised by the approval workflow"""
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFound(WorkflowError):
    status_code = 404


class TypeMismatch(WorkflowError):
    status_code = 400


class AlreadyApproved(WorkflowError):
    status_code = 409


class InvalidStatus(WorkflowError):
    status_code = 400


class NoCreatorResolvable(WorkflowError):
    status_code = 500


class ValidationFailed(WorkflowError):
    status_code = 500

    def __init__(self, message: str, errors: List[Dict[str, str]], preview: Optional[Dict[str, Any]] = None):
        super().__init__(message, {"validation": errors, "dataPreview": preview or {}})
        self.errors = errors
        self.preview = preview or {}


class NotificationFailed(WorkflowError):
    """Raised by a notification channel; logged by the gateway, never propagated"""
    status_code = 502
