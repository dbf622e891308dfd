"""HTTP route definitions for the signed-in user and the external routing layer."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, EmailStr, Field

from ..config import get_settings
from ..domain.account import Account, Role
from ..domain.capabilities import capabilities
from ..domain.contracts import RegisterAccountInput
from ..domain.errors import (
    AccessControlError,
    AccountNotFound,
    Forbidden,
    InvalidTransition,
    StoreUnavailable,
    TransitionConflict,
)
from ..domain.guard import AccessControl
from ..domain.routing import safe_redirect_target
from ..domain.service import AccountService
from ..security.middleware import extract_token
from ..security.tokens import Identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class AccountResponse(BaseModel):
    """Serialised representation of an `Account`."""

    identity: str
    email: str
    full_name: str | None
    organization: str | None
    role: str
    status: str
    approved_by: str | None
    approved_at: str | None
    rejection_reason: str | None
    created_at: str
    updated_at: str

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain account."""
        return cls(
            identity=account.identity,
            email=account.email,
            full_name=account.full_name,
            organization=account.organization,
            role=account.role.value,
            status=account.status.value,
            approved_by=account.approved_by,
            approved_at=account.approved_at.isoformat() if account.approved_at else None,
            rejection_reason=account.rejection_reason,
            created_at=account.created_at.isoformat(),
            updated_at=account.updated_at.isoformat(),
        )


class RegisterAccountRequest(BaseModel):
    """Profile details collected by the signup form."""

    email: EmailStr
    role: Role = Role.operator
    full_name: str | None = Field(default=None, max_length=200)
    organization: str | None = Field(default=None, max_length=200)


class RegisterAccountResponse(BaseModel):
    account: AccountResponse
    idempotent_replay: bool


class MeResponse(BaseModel):
    """The caller's profile with the flags the UI renders controls from."""

    account: AccountResponse
    capabilities: list[str]
    is_approved: bool
    is_admin: bool


class CapabilitiesResponse(BaseModel):
    authenticated: bool
    capabilities: list[str]


class RouteDecisionRequest(BaseModel):
    path: str = Field(..., min_length=1, max_length=2048)


class RouteDecisionResponse(BaseModel):
    allow: bool
    redirect: str | None = None
    degraded: bool = False


class PostLoginTargetResponse(BaseModel):
    location: str


def get_access_control(request: Request) -> AccessControl:
    """Resolve the `AccessControl` stored on the FastAPI application state."""
    access_control: AccessControl = request.app.state.access_control
    return access_control


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_token(request: Request) -> str | None:
    return extract_token(request, get_settings().session_cookie)


def optional_identity(
    token: str | None = Depends(get_token),
    access_control: AccessControl = Depends(get_access_control),
) -> Identity | None:
    return access_control.resolve_identity(token)


def require_identity(identity: Identity | None = Depends(optional_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
    return identity


def current_account(
    identity: Identity = Depends(require_identity),
    access_control: AccessControl = Depends(get_access_control),
) -> Account:
    """Load the caller's profile, surfacing store faults as HTTP errors."""
    try:
        return access_control.load_account(identity)
    except AccessControlError as exc:
        raise http_error_from_domain_error(exc) from exc


@router.post("/accounts", response_model=RegisterAccountResponse, status_code=status.HTTP_201_CREATED)
def register_account(
    response: Response,
    payload: RegisterAccountRequest,
    identity: Identity = Depends(require_identity),
    service: AccountService = Depends(get_service),
) -> RegisterAccountResponse:
    """Create the caller's profile; it always starts pending approval."""
    try:
        account, created = service.register(
            identity.identity_id,
            RegisterAccountInput(
                email=payload.email,
                role=payload.role,
                full_name=payload.full_name,
                organization=payload.organization,
            ),
        )
    except AccessControlError as exc:
        raise http_error_from_domain_error(exc) from exc
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return RegisterAccountResponse(
        account=AccountResponse.from_domain(account),
        idempotent_replay=not created,
    )


@router.get("/me", response_model=MeResponse)
def get_me(account: Account = Depends(current_account)) -> MeResponse:
    return MeResponse(
        account=AccountResponse.from_domain(account),
        capabilities=sorted(capability.value for capability in capabilities(account)),
        is_approved=account.is_approved,
        is_admin=account.is_admin,
    )


@router.get("/capabilities", response_model=CapabilitiesResponse)
def get_capabilities(
    identity: Identity | None = Depends(optional_identity),
    access_control: AccessControl = Depends(get_access_control),
) -> CapabilitiesResponse:
    """Capabilities for the caller; anonymous callers receive the public set."""
    try:
        granted = access_control.capabilities_for(identity)
    except AccessControlError as exc:
        raise http_error_from_domain_error(exc) from exc
    return CapabilitiesResponse(
        authenticated=identity is not None,
        capabilities=sorted(capability.value for capability in granted),
    )


@router.post("/route-decision", response_model=RouteDecisionResponse)
def route_decision(
    payload: RouteDecisionRequest,
    identity: Identity | None = Depends(optional_identity),
    access_control: AccessControl = Depends(get_access_control),
) -> RouteDecisionResponse:
    """Evaluate the route guard on behalf of an external routing layer."""
    decision = access_control.route_decision(payload.path, identity)
    return RouteDecisionResponse(
        allow=decision.allow,
        redirect=decision.redirect,
        degraded=decision.degraded,
    )


@router.get("/post-login-target", response_model=PostLoginTargetResponse)
def post_login_target(
    redirect_to: str | None = Query(default=None, alias="redirectTo"),
    access_control: AccessControl = Depends(get_access_control),
) -> PostLoginTargetResponse:
    """Where the login page should send the user once signed in."""
    return PostLoginTargetResponse(location=safe_redirect_target(redirect_to, access_control.routes))


def http_error_from_domain_error(exc: AccessControlError) -> HTTPException:
    status_code = status.HTTP_400_BAD_REQUEST
    if isinstance(exc, AccountNotFound):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, Forbidden):
        status_code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, (InvalidTransition, TransitionConflict)):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, StoreUnavailable):
        logger.error("account store unavailable: %s", exc)
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HTTPException(status_code=status_code, detail="account store unavailable")
    return HTTPException(status_code=status_code, detail=str(exc))
