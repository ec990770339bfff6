import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from posture_bridge.core.auth import require_access_assertion
from posture_bridge.core.deps import get_device_fetcher
from posture_bridge.core.errors import RequestParseError
from posture_bridge.core.security import AccessClaims
from posture_bridge.schemas.device import ErrorResponse, PostureRequest, PostureResponse
from posture_bridge.services.posture import compute_posture_scores
from posture_bridge.services.telemetry import DefenderDeviceFetcher

logger = logging.getLogger(__name__)

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


async def _parse_posture_request(request: Request) -> PostureRequest:
    body = await request.body()
    try:
        return PostureRequest.model_validate_json(body)
    except ValidationError as exc:
        raise RequestParseError(f"Invalid request body: {exc.errors(include_url=False)}") from exc


@router.post("", response_model=PostureResponse, responses=_ERROR_RESPONSES)
async def evaluate_posture(
    request: Request,
    claims: AccessClaims = Depends(require_access_assertion),
    fetcher: DefenderDeviceFetcher = Depends(get_device_fetcher),
):
    # body is parsed only once the caller is authenticated
    payload = await _parse_posture_request(request)
    logger.info("Scoring %d devices for %s", len(payload.devices), claims.sub or claims.email or "service token")
    result = await compute_posture_scores(payload.devices, fetcher)
    return PostureResponse(result=result)
