"""
VPS Autoscaler - Custom Exceptions

This module defines custom exception classes for monitoring and scaling
errors, providing structured error handling with detailed context information.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class InfrastructureException(Exception):
    """Base exception class for autoscaler errors"""

    def __init__(
        self,
        message: str,
        error_code: str = "INFRASTRUCTURE_ERROR",
        details: Optional[Dict[str, Any]] = None,
        server_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.server_id = server_id
        self.operation = operation
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "server_id": self.server_id,
            "operation": self.operation,
            "timestamp": self.timestamp.isoformat(),
        }

    def log_extra(self) -> Dict[str, Any]:
        """Fields for ``logger.*(..., extra=...)``; LogRecord reserves ``message``"""
        return {
            "error_code": self.error_code,
            "error": self.message,
            "details": self.details,
            "server_id": self.server_id,
            "operation": self.operation,
        }


class DatabaseOperationError(InfrastructureException):
    """Raised when database operation fails"""

    def __init__(self, message: str, operation: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="DATABASE_OPERATION_ERROR",
            details=details,
            operation=operation,
        )


class StoreUnavailableError(InfrastructureException):
    """Raised when a store-wide listing fails and the tick cannot proceed"""

    def __init__(self, store: str, reason: str):
        super().__init__(
            message=f"Store unavailable: {store}: {reason}",
            error_code="STORE_UNAVAILABLE",
            details={"store": store, "reason": reason},
            operation="store_list",
        )


class UnreachableError(InfrastructureException):
    """Raised when a server's metrics agent does not answer"""

    def __init__(self, server_id: str, endpoint: Optional[str] = None, reason: Optional[str] = None):
        details = {}
        if endpoint:
            details["endpoint"] = endpoint
        if reason:
            details["reason"] = reason

        super().__init__(
            message=f"Server unreachable: {server_id}",
            error_code="SERVER_UNREACHABLE",
            details=details,
            server_id=server_id,
            operation="telemetry_sample",
        )


class ServerNotFoundError(InfrastructureException):
    """Raised when the provider or the registry does not know a server"""

    def __init__(self, server_identifier: str, search_type: str = "id"):
        super().__init__(
            message=f"Server not found: {server_identifier}",
            error_code="SERVER_NOT_FOUND",
            details={"server_identifier": server_identifier, "search_type": search_type},
            server_id=server_identifier,
            operation="server_lookup",
        )


class InsufficientDataError(InfrastructureException):
    """Raised when a window holds fewer data points than evaluation requires"""

    def __init__(self, server_id: str, metric: str, available: int, required: int):
        super().__init__(
            message=f"Insufficient data for {metric}: {available} of {required} points",
            error_code="INSUFFICIENT_DATA",
            details={"metric": metric, "available": available, "required": required},
            server_id=server_id,
            operation="policy_evaluate",
        )
        self.available = available
        self.required = required


class ExternalServiceError(InfrastructureException):
    """Raised when a call to an external service fails or times out"""

    def __init__(
        self,
        service: str,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        operation: Optional[str] = None,
    ):
        details = details or {}
        details["service"] = service
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message=message,
            error_code="EXTERNAL_SERVICE_ERROR",
            details=details,
            operation=operation or "external_call",
        )
        self.service = service
        self.status_code = status_code


class PolicyValidationError(InfrastructureException):
    """Raised when a policy or alert definition is malformed"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        errors: Optional[list[Dict[str, Any]]] = None,
    ):
        details: Dict[str, Any] = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        if errors:
            details["errors"] = errors

        super().__init__(
            message=message,
            error_code="POLICY_VALIDATION_ERROR",
            details=details,
            operation="policy_validate",
        )


class ConfigNotFoundError(InfrastructureException):
    """Raised when a policy's server has no recorded configuration"""

    def __init__(self, server_id: str, policy_id: Optional[str] = None):
        details = {}
        if policy_id:
            details["policy_id"] = policy_id

        super().__init__(
            message=f"No configuration recorded for server {server_id}",
            error_code="CONFIG_NOT_FOUND",
            details=details,
            server_id=server_id,
            operation="config_lookup",
        )


class MetricUnavailableError(InfrastructureException):
    """Raised when a snapshot lacks the value a definition needs"""

    def __init__(self, server_id: str, metric: str):
        super().__init__(
            message=f"Metric {metric} unavailable for server {server_id}",
            error_code="METRIC_UNAVAILABLE",
            details={"metric": metric},
            server_id=server_id,
            operation="metric_extract",
        )


class ResourceNotFoundError(InfrastructureException):
    """Raised when a requested resource is not found"""

    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            message=f"{resource_type} not found: {resource_id}",
            error_code="RESOURCE_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id},
            operation="resource_lookup",
        )


class NotificationError(InfrastructureException):
    """Raised when a notification channel fails to deliver"""

    def __init__(self, channel: str, message: str):
        super().__init__(
            message=message,
            error_code="NOTIFICATION_ERROR",
            details={"channel": channel},
            operation="notify",
        )
