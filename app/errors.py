from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class BackupEngineError(Exception):
    """Base class for engine failures surfaced to callers as a code plus message."""

    code = "backup_engine_error"
    status_code = 500

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class BackupNotFound(BackupEngineError):
    code = "backup_not_found"
    status_code = 404


class BaseBackupNotFound(BackupEngineError):
    code = "base_backup_not_found"
    status_code = 400


class BackupCreationFailed(BackupEngineError):
    code = "backup_creation_failed"
    status_code = 500


class BackupNotRestorable(BackupEngineError):
    code = "backup_not_restorable"
    status_code = 409


class IntegrityCheckFailed(BackupEngineError):
    code = "integrity_check_failed"
    status_code = 422


class RestoreTargetConflict(BackupEngineError):
    code = "restore_target_conflict"
    status_code = 409


class RestoreFailed(BackupEngineError):
    code = "restore_failed"
    status_code = 500


class ScheduleInvalid(BackupEngineError):
    code = "schedule_invalid"
    status_code = 400


class ScheduleNotFound(BackupEngineError):
    code = "schedule_not_found"
    status_code = 404


class PlanNotFound(BackupEngineError):
    code = "plan_not_found"
    status_code = 404


class PlanInvalid(BackupEngineError):
    code = "plan_invalid"
    status_code = 400


class StepExecutionFailed(BackupEngineError):
    code = "step_execution_failed"
    status_code = 500


class InvalidStatusTransition(BackupEngineError):
    code = "invalid_status_transition"
    status_code = 409


class BackupInUse(BackupEngineError):
    code = "backup_in_use"
    status_code = 409


class StorageError(BackupEngineError):
    code = "storage_unavailable"
    status_code = 503


class StorageTimeout(StorageError):
    code = "storage_timeout"


class OperationCancelled(BackupEngineError):
    code = "operation_cancelled"
    status_code = 409


def _error_payload(code: str, message: str, details):
    return {"code": code, "message": message, "details": details}


def register_error_handlers(app) -> None:
    @app.exception_handler(BackupEngineError)
    async def engine_exception_handler(request: Request, exc: BackupEngineError):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.code, exc.message, exc.details),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(code, message, details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=_error_payload(
                "validation_error", "Validation error", exc.errors()
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                "internal_error", "Internal server error", None
            ),
        )
