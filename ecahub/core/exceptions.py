"""
Пользовательские исключения для централизованной обработки ошибок
"""

from typing import Optional, Dict, Any


class BaseAppException(Exception):
    """Базовое исключение приложения"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


# === Ошибки аутентификации ===
class AuthenticationError(BaseAppException):
    """Ошибка аутентификации"""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 401, "AUTHENTICATION_ERROR", details)


class AuthorizationError(BaseAppException):
    """Ошибка авторизации"""

    def __init__(
        self, message: str = "Access denied", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, 403, "AUTHORIZATION_ERROR", details)


# === Ошибки валидации ===
class ValidationError(BaseAppException):
    """Ошибка валидации данных"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, "VALIDATION_ERROR", details)


class DuplicateError(BaseAppException):
    """Ошибка дублирования данных"""

    def __init__(self, resource: str, field: str, value: str):
        message = f"{resource} with {field} '{value}' already exists"
        details = {"resource": resource, "field": field, "value": value}
        super().__init__(message, 409, "DUPLICATE_ERROR", details)


# === Ошибки ресурсов ===
class NotFoundError(BaseAppException):
    """Ресурс не найден"""

    def __init__(self, resource: str, identifier: str = None):
        if identifier:
            message = f"{resource} with identifier '{identifier}' not found"
            details = {"resource": resource, "identifier": identifier}
        else:
            message = f"{resource} not found"
            details = {"resource": resource}
        super().__init__(message, 404, "NOT_FOUND", details)


# === Бизнес-логика ===
class BusinessLogicError(BaseAppException):
    """Ошибка бизнес-логики"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, "BUSINESS_LOGIC_ERROR", details)


class LimitExceededError(BusinessLogicError):
    """Превышен лимит"""

    def __init__(self, resource: str, limit: int, current: int):
        message = f"{resource} limit exceeded: {current}/{limit}"
        details = {"resource": resource, "limit": limit, "current": current}
        super().__init__(message, details)


class PermissionDeniedError(BaseAppException):
    """Отказано в доступе к ресурсу"""

    def __init__(self, action: str, resource: str, reason: str = None):
        message = f"Permission denied: cannot {action} {resource}"
        if reason:
            message += f" - {reason}"
        details = {"action": action, "resource": resource, "reason": reason}
        super().__init__(message, 403, "PERMISSION_DENIED", details)


# === Распределение ECA ===
class StateConflictError(BaseAppException):
    """Операция недопустима в текущем состоянии семестра ECA"""

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        error_details = {"current_state": current_state}
        if details:
            error_details.update(details)
        super().__init__(message, 409, "STATE_CONFLICT", error_details)


class LockConflictError(BaseAppException):
    """Параллельная операция над тем же семестром уже выполняется"""

    def __init__(self, term_id: int, operation: str = "allocation"):
        message = f"Another {operation} is already in progress for term {term_id}"
        details = {"term_id": term_id, "operation": operation, "retryable": True}
        super().__init__(message, 409, "LOCK_CONFLICT", details)


class DataIntegrityError(BaseAppException):
    """
    Запись ссылается на удалённую или несуществующую сущность.

    Во время распределения не пробрасывается: запись пропускается, а текст
    ошибки попадает в список errors результата.
    """

    def __init__(self, record: str, record_id: Any, problem: str):
        message = f"{record} {record_id} skipped: {problem}"
        details = {"record": record, "record_id": record_id, "problem": problem}
        super().__init__(message, 422, "DATA_INTEGRITY_ERROR", details)


class CapacityInvariantViolation(BaseAppException):
    """Зачисление превысило бы max_capacity - ошибка алгоритма, прогон отменяется"""

    def __init__(self, activity_id: int, enrollment: int, max_capacity: Optional[int]):
        message = (
            f"Capacity invariant violated for activity {activity_id}: "
            f"enrollment {enrollment} against max capacity {max_capacity}"
        )
        details = {
            "activity_id": activity_id,
            "enrollment": enrollment,
            "max_capacity": max_capacity,
        }
        super().__init__(message, 500, "CAPACITY_INVARIANT_VIOLATION", details)


# === Ошибки базы данных ===
class DatabaseError(BaseAppException):
    """Ошибка базы данных"""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 500, "DATABASE_ERROR", details)


class DatabaseConnectionError(BaseAppException):
    """Ошибка подключения к базе данных"""

    def __init__(self, message: str = "Database connection failed"):
        super().__init__(message, 503, "DATABASE_CONNECTION_ERROR")


class DatabaseTimeoutError(BaseAppException):
    """Таймаут операции с базой данных"""

    def __init__(self, operation: str, timeout: int):
        message = f"Database operation '{operation}' timed out after {timeout}s"
        details = {"operation": operation, "timeout": timeout}
        super().__init__(message, 504, "DATABASE_TIMEOUT", details)


class DatabaseIntegrityError(BaseAppException):
    """Ошибка целостности данных"""

    def __init__(self, constraint: str, details: Optional[Dict[str, Any]] = None):
        message = f"Database integrity constraint violated: {constraint}"
        error_details = {"constraint": constraint}
        if details:
            error_details.update(details)
        super().__init__(message, 409, "DATABASE_INTEGRITY_ERROR", error_details)


# === Ошибки конфигурации ===
class ConfigurationError(BaseAppException):
    """Ошибка конфигурации"""

    def __init__(self, parameter: str, message: str = None):
        message = (
            message or f"Configuration parameter '{parameter}' is invalid or missing"
        )
        details = {"parameter": parameter}
        super().__init__(message, 500, "CONFIGURATION_ERROR", details)
