"""
Exception hierarchy for the gas alert service.

Every domain error carries a stable error code:
- V0xx: request / reading validation
- D0xx: datastore
- N0xx: notification pipeline
- C0xx: configuration
"""
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


class ErrorSeverity(str, Enum):
    """Error severity"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class GasAlertException(Exception):
    """Root of all service exceptions"""

    def __init__(
        self,
        message: str,
        error_code: str = "G000",
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        cause: Optional[Exception] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.recoverable = recoverable
        self.severity = severity
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None
        }

    def __str__(self):
        return f"[{self.error_code}] {self.message}"

    def __repr__(self):
        return f"{self.__class__.__name__}(code={self.error_code}, message={self.message})"


# ============================================
# Validation (V001-V099)
# ============================================

class ValidationException(GasAlertException):
    """Validation errors"""
    pass


class InvalidReadingError(ValidationException):
    def __init__(self, sensor_type: str, reason: str):
        super().__init__(
            message=f"Invalid reading for sensor '{sensor_type}': {reason}",
            error_code="V001",
            details={"sensor_type": sensor_type, "reason": reason},
            severity=ErrorSeverity.LOW
        )


class InvalidTimeWindowError(ValidationException):
    def __init__(self, value: str):
        super().__init__(
            message=f"Invalid time of day '{value}', expected HH:MM",
            error_code="V002",
            details={"value": value},
            severity=ErrorSeverity.LOW
        )


class DeviceNotFoundError(ValidationException):
    def __init__(self, device_id: str):
        super().__init__(
            message=f"Device not registered: {device_id}",
            error_code="V003",
            details={"device_id": device_id},
            severity=ErrorSeverity.LOW
        )


# ============================================
# Datastore (D001-D099)
# ============================================

class DatastoreException(GasAlertException):
    """Datastore errors"""
    pass


class DatastoreConnectionError(DatastoreException):
    def __init__(self, reason: str, host: str = ""):
        super().__init__(
            message=f"Datastore connection failed: {reason}",
            error_code="D001",
            details={"reason": reason, "host": host},
            recoverable=True,
            severity=ErrorSeverity.CRITICAL
        )


class DatastoreOperationError(DatastoreException):
    def __init__(self, operation: str, collection: str, reason: str):
        super().__init__(
            message=f"Datastore operation failed ({operation} on {collection}): {reason}",
            error_code="D002",
            details={
                "operation": operation,
                "collection": collection,
                "reason": reason
            },
            recoverable=True,
            severity=ErrorSeverity.HIGH
        )


# ============================================
# Notification pipeline (N001-N099)
# ============================================

class NotificationException(GasAlertException):
    """Notification pipeline errors"""
    pass


class EmailDeliveryError(NotificationException):
    def __init__(self, provider: str, reason: str):
        super().__init__(
            message=f"Email delivery via {provider} failed: {reason}",
            error_code="N001",
            details={"provider": provider, "reason": reason},
            recoverable=True,
            severity=ErrorSeverity.MEDIUM
        )


# ============================================
# Configuration (C001-C099)
# ============================================

class ConfigurationError(GasAlertException):
    def __init__(self, setting: str, reason: str):
        super().__init__(
            message=f"Invalid configuration for {setting}: {reason}",
            error_code="C001",
            details={"setting": setting, "reason": reason},
            severity=ErrorSeverity.CRITICAL
        )
