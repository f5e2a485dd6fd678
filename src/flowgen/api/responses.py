"""Mapping of dispatch outcomes to HTTP responses."""

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from flowgen.api.exceptions import create_error_response
from flowgen.api.schemas.common import ProcessingResponse
from flowgen.domain.jobs import Outcome, Processing


def outcome_response(outcome: Outcome, processing_message: str) -> JSONResponse:
    """200 with the worker reply, 202 while processing, 502 for a malformed reply.

    A worker's failure reply is still a 200: the reply carries the failure.
    """
    if isinstance(outcome, Processing):
        body = ProcessingResponse(
            message=processing_message,
            request_id=outcome.job.correlation_id,
            job_id=outcome.job_id,
        )
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=body.model_dump(by_alias=True),
        )

    if outcome.malformed:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=create_error_response(
                status_code=status.HTTP_502_BAD_GATEWAY,
                message=outcome.error or "Malformed worker reply",
                error_code="WORKER_REPLY_MALFORMED",
                details={"requestId": outcome.job.correlation_id},
            ),
        )

    return JSONResponse(status_code=status.HTTP_200_OK, content=jsonable_encoder(outcome.reply))
