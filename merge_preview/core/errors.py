import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    def __init__(self, code: str, message: str, details: Any = None, status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code


class RepositoryNotFoundError(AppError):
    def __init__(self, repository: str):
        super().__init__(
            code="REPOSITORY_NOT_FOUND",
            message=f"Repository not found: {repository}",
            details={"repository": repository},
            status_code=404,
        )


class InvalidRepositoryError(AppError):
    def __init__(self, repository: str):
        super().__init__(
            code="INVALID_REPOSITORY",
            message="Repository path is invalid",
            details={"repository": repository},
            status_code=400,
        )


class BranchNotFoundError(AppError):
    def __init__(self, repository: str, branch: str):
        super().__init__(
            code="BRANCH_NOT_FOUND",
            message=f"Branch not found: {branch}",
            details={"repository": repository, "branch": branch},
            status_code=404,
        )


class DetachedHeadError(AppError):
    def __init__(self, repository: str):
        super().__init__(
            code="DETACHED_HEAD",
            message="Cannot merge into a detached HEAD",
            details={"repository": repository},
            status_code=409,
        )


class GitCommandError(AppError):
    def __init__(self, repository: str, args: list[str], reason: str, returncode: int | None = None):
        super().__init__(
            code="GIT_COMMAND_ERROR",
            message="Git command failed",
            details={
                "repository": repository,
                "command": " ".join(["git", *args]),
                "reason": reason,
            },
            status_code=500,
        )
        self.returncode = returncode


class MergeDialogNotFoundError(AppError):
    def __init__(self, dialog_id: str):
        super().__init__(
            code="MERGE_DIALOG_NOT_FOUND",
            message=f"Merge dialog not found: {dialog_id}",
            details={"dialog_id": dialog_id},
            status_code=404,
        )


class MergeNotAllowedError(AppError):
    def __init__(self, dialog_id: str, reason: str):
        super().__init__(
            code="MERGE_NOT_ALLOWED",
            message="Merge cannot be started",
            details={"dialog_id": dialog_id, "reason": reason},
            status_code=409,
        )


def _error_payload(code: str, message: str, details: Any = None) -> dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
        }
    }


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        logger.warning(
            "AppError on %s %s: code=%s message=%s details=%s",
            request.method,
            request.url.path,
            exc.code,
            exc.message,
            exc.details,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.code, exc.message, exc.details),
        )

    @app.exception_handler(Exception)
    async def _internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                code="INTERNAL_SERVER_ERROR",
                message="Unexpected server error",
                details={"reason": str(exc)},
            ),
        )
