"""
Пользовательская иерархия исключений приложения.
"""


class AppException(Exception):
    def __init__(self, status_code: int, detail: str, error_code: str | None = None):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.error_code = error_code


class NotFoundException(AppException):
    def __init__(self, resource: str, identifier):
        super().__init__(404, f"{resource} с id {identifier} не найден", "NOT_FOUND")


class ValidationException(AppException):
    def __init__(self, detail: str):
        super().__init__(400, detail, "VALIDATION_ERROR")


class InvalidTransitionError(AppException):
    """Недопустимый переход статуса уведомления (например, отмена отправленного)."""

    def __init__(self, notification_id: int, current_status: str, action: str):
        super().__init__(
            409,
            f"Нельзя выполнить '{action}' для уведомления {notification_id} в статусе {current_status}",
            "INVALID_TRANSITION",
        )
        self.notification_id = notification_id
        self.current_status = current_status
        self.action = action
