from __future__ import annotations

from fastapi import HTTPException

from backend.app.schemas.planning import field_errors
from backend.services.errors import (
    CombineConflict,
    PersistenceFailure,
    StaleEditState,
    ValidationError,
)


def validation_failed(exc: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={
            "message": str(exc),
            "errors": {key: field_errors(errs) for key, errs in exc.errors.items()},
        },
    )


def combine_conflict(exc: CombineConflict) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


def stale_edit(exc: StaleEditState) -> HTTPException:
    # terminal for the editing session: local edits are discarded
    return HTTPException(
        status_code=409,
        detail={"message": str(exc), "recoverable": False, "action": "restart"},
    )


def persistence_failed(exc: PersistenceFailure) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={"message": str(exc), "retryable": exc.retryable},
    )
