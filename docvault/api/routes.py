"""HTTP route definitions for the document store."""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from ..config import get_settings
from ..domain.account import Account, Role
from ..domain.backup import BackupService
from ..domain.contracts import SessionClaims
from ..domain.documents import DocumentService
from ..domain.errors import Forbidden, RateLimited, ServiceError, Unauthenticated, ValidationError
from ..domain.service import AccountService
from ..security.rate_limiter import RateLimiter, build_rate_limiter
from ..security.tokens import SessionIssuer

logger = logging.getLogger(__name__)


class EscapedJSONResponse(JSONResponse):
    """JSON response with non-ASCII escaped, so stored lone surrogates still render."""

    def render(self, content: Any) -> bytes:
        return json.dumps(content, allow_nan=False, separators=(",", ":")).encode("ascii")


router = APIRouter(default_response_class=EscapedJSONResponse)


class AccountResponse(BaseModel):
    """Serialised representation of an `Account`; the password hash is never included."""

    id: int
    email: str
    name: str
    role: Role
    created_at: str

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(
            id=account.account_id,
            email=account.email,
            name=account.name,
            role=account.role,
            created_at=account.created_at.isoformat(),
        )


class CredentialsRequest(BaseModel):
    """Login body; fields are optional so missing ones surface as a 400."""

    email: str | None = Field(default=None, validation_alias=AliasChoices("email", "identity"))
    password: str | None = Field(default=None, validation_alias=AliasChoices("password", "secret"))


class RegisterRequest(CredentialsRequest):
    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "displayName"))


class CreateUserRequest(RegisterRequest):
    role: str | None = None


class UpdateUserRequest(BaseModel):
    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "displayName"))
    role: str | None = None


class SessionResponse(BaseModel):
    token: str
    account: AccountResponse


class AccountEnvelope(BaseModel):
    account: AccountResponse


class AccountListResponse(BaseModel):
    users: list[AccountResponse]


class DataResponse(BaseModel):
    data: dict[str, Any]


class SaveDataRequest(BaseModel):
    data: Any = None


class SaveValueRequest(BaseModel):
    value: Any = None


class DocumentResponse(BaseModel):
    key: str
    value: Any
    updatedAt: str


class OkResponse(BaseModel):
    ok: bool = True


class RestoreResponse(BaseModel):
    ok: bool = True
    ops: int


settings = get_settings()

rate_limiter: RateLimiter = build_rate_limiter(settings)


def install_exception_handlers(app: FastAPI) -> None:
    """Render service errors as ``{"error": message}`` with their status code."""

    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError) -> JSONResponse:
        message = exc.message if exc.status_code < 500 else "internal server error"
        return EscapedJSONResponse(status_code=exc.status_code, content={"error": message})

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.debug("rejected request body on %s: %s", request.url.path, exc.errors())
        return EscapedJSONResponse(status_code=400, content={"error": "invalid request body"})


def get_account_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_document_service(request: Request) -> DocumentService:
    service: DocumentService = request.app.state.document_service
    return service


def get_backup_service(request: Request) -> BackupService:
    service: BackupService = request.app.state.backup_service
    return service


def get_session_issuer(request: Request) -> SessionIssuer:
    issuer: SessionIssuer = request.app.state.session_issuer
    return issuer


def require_session(
    authorization: str | None = Header(default=None),
    issuer: SessionIssuer = Depends(get_session_issuer),
) -> SessionClaims:
    """Authenticate the bearer token carried by the request."""
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthenticated("no token")
    return issuer.verify(authorization[len("Bearer "):].strip())


def require_owner(claims: SessionClaims = Depends(require_session)) -> SessionClaims:
    """Authorize an already authenticated session for owner-only operations."""
    if not claims.is_owner:
        raise Forbidden("owner only")
    return claims


def _check_rate(key: str) -> None:
    if not rate_limiter.allow(key):
        raise RateLimited("rate limited")


@router.post("/auth/register", response_model=SessionResponse)
def register(
    request: Request,
    payload: RegisterRequest,
    service: AccountService = Depends(get_account_service),
) -> SessionResponse:
    """Self-register; the very first account becomes the owner."""
    client = request.client.host if request.client else "unknown"
    _check_rate(f"register:{client}")
    grant = service.register(payload.email, payload.password, payload.name)
    return SessionResponse(token=grant.token, account=AccountResponse.from_domain(grant.account))


@router.post("/auth/login", response_model=SessionResponse)
def login(
    payload: CredentialsRequest,
    service: AccountService = Depends(get_account_service),
) -> SessionResponse:
    _check_rate(f"login:{payload.email or ''}")
    grant = service.login(payload.email, payload.password)
    return SessionResponse(token=grant.token, account=AccountResponse.from_domain(grant.account))


@router.get("/auth/me", response_model=AccountEnvelope)
def me(
    claims: SessionClaims = Depends(require_session),
    service: AccountService = Depends(get_account_service),
) -> AccountEnvelope:
    return AccountEnvelope(account=AccountResponse.from_domain(service.get_self(claims.account_id)))


@router.get("/data", response_model=DataResponse)
def get_data(
    claims: SessionClaims = Depends(require_session),
    documents: DocumentService = Depends(get_document_service),
) -> DataResponse:
    """Return every document of the caller keyed by section name."""
    return DataResponse(data=documents.get_values(claims.account_id))


@router.put("/data", response_model=OkResponse)
def save_data(
    payload: SaveDataRequest,
    claims: SessionClaims = Depends(require_session),
    documents: DocumentService = Depends(get_document_service),
) -> OkResponse:
    """Replace several documents at once; either all of them are written or none."""
    if not isinstance(payload.data, dict):
        raise ValidationError("data object required")
    documents.upsert_many(claims.account_id, payload.data)
    return OkResponse()


@router.get("/data/{key}", response_model=DocumentResponse)
def get_document(
    key: str,
    claims: SessionClaims = Depends(require_session),
    documents: DocumentService = Depends(get_document_service),
) -> DocumentResponse:
    entry = documents.get_one(claims.account_id, key)
    return DocumentResponse(key=key, value=entry.value, updatedAt=entry.updated_at.isoformat())


@router.put("/data/{key}", response_model=OkResponse)
def save_document(
    key: str,
    payload: SaveValueRequest,
    claims: SessionClaims = Depends(require_session),
    documents: DocumentService = Depends(get_document_service),
) -> OkResponse:
    # an explicit null is a value; only an absent field is rejected
    if "value" not in payload.model_fields_set:
        raise ValidationError("value required")
    documents.upsert_one(claims.account_id, key, payload.value)
    return OkResponse()


@router.delete("/data/{key}", response_model=OkResponse)
def delete_document(
    key: str,
    claims: SessionClaims = Depends(require_session),
    documents: DocumentService = Depends(get_document_service),
) -> OkResponse:
    documents.delete_one(claims.account_id, key)
    return OkResponse()


@router.get("/admin/users", response_model=AccountListResponse)
def list_users(
    claims: SessionClaims = Depends(require_owner),
    service: AccountService = Depends(get_account_service),
) -> AccountListResponse:
    return AccountListResponse(
        users=[AccountResponse.from_domain(account) for account in service.admin_list(claims)]
    )


@router.post("/admin/users", response_model=AccountEnvelope)
def create_user(
    payload: CreateUserRequest,
    claims: SessionClaims = Depends(require_owner),
    service: AccountService = Depends(get_account_service),
) -> AccountEnvelope:
    account = service.admin_create(claims, payload.email, payload.password, payload.name, payload.role)
    return AccountEnvelope(account=AccountResponse.from_domain(account))


@router.patch("/admin/users/{account_id}", response_model=AccountEnvelope)
def update_user(
    account_id: int,
    payload: UpdateUserRequest,
    claims: SessionClaims = Depends(require_owner),
    service: AccountService = Depends(get_account_service),
) -> AccountEnvelope:
    account = service.admin_update(claims, account_id, payload.name, payload.role)
    return AccountEnvelope(account=AccountResponse.from_domain(account))


@router.delete("/admin/users/{account_id}", response_model=OkResponse)
def delete_user(
    account_id: int,
    claims: SessionClaims = Depends(require_owner),
    service: AccountService = Depends(get_account_service),
) -> OkResponse:
    service.admin_delete(claims, account_id)
    return OkResponse()


@router.get("/backup")
def export_backup(
    claims: SessionClaims = Depends(require_session),
    backups: BackupService = Depends(get_backup_service),
) -> dict[str, Any]:
    """Download the caller's full document set."""
    return backups.export(claims.account_id)


@router.post("/backup", response_model=RestoreResponse)
def restore_backup(
    payload: dict[str, Any] = Body(...),
    claims: SessionClaims = Depends(require_session),
    backups: BackupService = Depends(get_backup_service),
) -> RestoreResponse:
    """Replace the caller's documents with a previously exported payload."""
    return RestoreResponse(ops=backups.restore(claims.account_id, payload))
