"""Translation of command admission errors into HTTP responses."""

from __future__ import annotations

from typing import Any, Dict, Union

from fastapi import HTTPException, status

from site_fleet.services import AdmissionError, Command, CommandReceipt, SimulationEngine

ADMISSION_STATUS = {
    AdmissionError.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    AdmissionError.CONFLICT: status.HTTP_409_CONFLICT,
    AdmissionError.INVALID: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AdmissionError.QUEUE_FULL: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(exc: AdmissionError) -> HTTPException:
    return HTTPException(
        status_code=ADMISSION_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        detail={"code": exc.code, "message": exc.message},
    )


def submit_or_raise(engine: SimulationEngine, command: Union[Command, Dict[str, Any]]) -> CommandReceipt:
    """Queue ``command`` on the engine, raising the mapped :class:`HTTPException` on refusal."""

    try:
        return engine.submit(command)
    except AdmissionError as exc:
        raise http_error(exc) from exc
