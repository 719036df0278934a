"""Login endpoint."""
import logging

from fastapi import APIRouter, Depends, Request, Response

from ..cookies import set_no_store, set_refresh_cookie
from ..dependencies import get_session_service
from ..rate_limit import enforce_login_rate_limit, get_client_ip
from ..schemas import LoginRequest, LoginResponse, UserPublic
from ..sessions import ClientInfo, SessionService

router = APIRouter(prefix="/login", tags=["auth"])
logger = logging.getLogger(__name__)


def client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


@router.post(
    "",
    response_model=LoginResponse,
    dependencies=[Depends(enforce_login_rate_limit)],
)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    service: SessionService = Depends(get_session_service),
):
    """Login with email or username and password."""
    set_no_store(response)
    result = service.login(payload.identifier, payload.password, client=client_info(request))
    set_refresh_cookie(response, result.refresh)
    return LoginResponse(access_token=result.access_token, user=UserPublic(**result.user))
