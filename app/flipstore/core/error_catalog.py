from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    FEATURE_NOT_FOUND = ErrorDefinition(
        "FEATURE_NOT_FOUND",
        "Feature not found",
        status.HTTP_404_NOT_FOUND,
    )
    GROUP_NOT_FOUND = ErrorDefinition(
        "GROUP_NOT_FOUND",
        "Group not found",
        status.HTTP_404_NOT_FOUND,
    )
    FEATURE_ALREADY_EXISTS = ErrorDefinition(
        "FEATURE_ALREADY_EXISTS",
        "Feature already exists",
        status.HTTP_409_CONFLICT,
    )
    INVALID_ARGUMENT = ErrorDefinition(
        "INVALID_ARGUMENT",
        "Invalid argument",
        status.HTTP_400_BAD_REQUEST,
    )
    BACKEND_FAILURE = ErrorDefinition(
        "BACKEND_FAILURE",
        "Feature store backend failure",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    GROUP_OPERATION_FAILED = ErrorDefinition(
        "GROUP_OPERATION_FAILED",
        "Group operation partially applied",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None, message: str | None = None):
        self.error = error
        self.details = details
        super().__init__(message or error.message)


class FeatureNotFoundError(AppError):
    def __init__(self, uid: str | None):
        self.uid = uid
        super().__init__(
            ErrorCatalog.FEATURE_NOT_FOUND,
            details={"uid": uid},
            message=f"Feature '{uid}' does not exist",
        )


class GroupNotFoundError(AppError):
    def __init__(self, group_name: str | None):
        self.group_name = group_name
        super().__init__(
            ErrorCatalog.GROUP_NOT_FOUND,
            details={"group": group_name},
            message=f"Group '{group_name}' does not exist",
        )


class FeatureAlreadyExistsError(AppError):
    def __init__(self, uid: str):
        self.uid = uid
        super().__init__(
            ErrorCatalog.FEATURE_ALREADY_EXISTS,
            details={"uid": uid},
            message=f"Feature '{uid}' already exists",
        )


class InvalidArgumentError(AppError):
    def __init__(self, message: str, *, argument: str | None = None):
        super().__init__(ErrorCatalog.INVALID_ARGUMENT, details={"argument": argument}, message=message)


class BackendFailureError(AppError):
    def __init__(self, operation: str, backend: str, error: ErrorDefinition = ErrorCatalog.BACKEND_FAILURE, details=None):
        self.operation = operation
        self.backend = backend
        payload = {"operation": operation, "backend": backend}
        if details:
            payload.update(details)
        super().__init__(error, details=payload, message=f"{backend} failed during '{operation}'")


class GroupOperationError(BackendFailureError):
    """Raised when a group fan-out stops part way.

    Members listed in ``completed`` were updated; ``failed_uid`` and any
    member after it were not.
    """

    def __init__(self, operation: str, backend: str, group_name: str, failed_uid: str, completed: list[str]):
        self.group_name = group_name
        self.failed_uid = failed_uid
        self.completed = list(completed)
        super().__init__(
            operation,
            backend,
            error=ErrorCatalog.GROUP_OPERATION_FAILED,
            details={"group": group_name, "failed_uid": failed_uid, "completed": self.completed},
        )
