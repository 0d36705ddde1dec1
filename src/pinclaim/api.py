"""
HTTP API for PinClaim.

Thin FastAPI layer over ClaimService. JSON bodies use camelCase keys;
amounts travel as decimal strings.
"""

from __future__ import annotations

import secrets
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal

from fastapi import Depends, FastAPI, HTTPException, Request, Security, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from stellar_sdk import Keypair

from pinclaim import __version__
from pinclaim.core.config import Config
from pinclaim.core.exceptions import (
    ClaimNotFoundError,
    ConfigurationError,
    DeliveryError,
    InvalidStateError,
    LedgerError,
    PinClaimError,
    ValidationError,
)
from pinclaim.core.logging import get_logger
from pinclaim.core.types import EscrowClaim, RedeemErrorKind
from pinclaim.ledger.base import LedgerGateway
from pinclaim.ledger.stellar import StellarLedgerGateway
from pinclaim.notify.base import NotificationGateway
from pinclaim.notify.memory import InMemoryNotificationGateway
from pinclaim.notify.twilio import TwilioNotificationGateway
from pinclaim.service import ClaimService
from pinclaim.sweeper import ExpirySweeper

logger = get_logger("api")

ADMIN_KEY_HEADER = "X-Admin-Key"
admin_key_header = APIKeyHeader(name=ADMIN_KEY_HEADER, auto_error=False)

REDEEM_STATUS_CODES: dict[RedeemErrorKind, int] = {
    RedeemErrorKind.WRONG_PIN: status.HTTP_403_FORBIDDEN,
    RedeemErrorKind.LOCKED: status.HTTP_423_LOCKED,
    RedeemErrorKind.EXPIRED: status.HTTP_410_GONE,
    RedeemErrorKind.ALREADY_CLAIMED: status.HTTP_409_CONFLICT,
    RedeemErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RedeemErrorKind.NOT_ACTIVE: status.HTTP_409_CONFLICT,
    RedeemErrorKind.IN_PROGRESS: status.HTTP_409_CONFLICT,
}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateClaimRequest(CamelModel):
    sender_account: str
    amount: Decimal
    asset_code: str = "NATIVE"
    notify_address: str
    ttl_seconds: int | None = None
    sender_name: str | None = Field(default=None, max_length=64)


class CreateClaimResponse(CamelModel):
    claim_id: str
    escrow_reference: str
    expires_at: datetime
    pin: str
    amount: str
    asset_code: str
    tx_hash: str | None = None
    notified: bool
    warnings: list[str] = []


class RedeemRequest(CamelModel):
    pin: str
    claimant_account: str


class RedeemSuccessResponse(CamelModel):
    claim_id: str
    amount: str
    asset_code: str
    claimed_at: datetime
    tx_hash: str | None = None


class RedeemErrorResponse(CamelModel):
    claim_id: str
    error_kind: str
    message: str
    remaining_attempts: int | None = None


class RefundRequest(CamelModel):
    sender_account: str


class NotifyRequest(CamelModel):
    pin: str
    notify_address: str | None = None


class NotifyResponse(CamelModel):
    message_id: str
    address: str
    provider: str
    status: str | None = None


def status_code_for(exc: PinClaimError) -> int:
    """HTTP status for a service exception."""
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ClaimNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, InvalidStateError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, (LedgerError, DeliveryError)):
        if exc.retryable:
            return status.HTTP_503_SERVICE_UNAVAILABLE
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _camel_dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)


def create_app(
    service: ClaimService,
    sweeper: ExpirySweeper | None = None,
    admin_api_key: str | None = None,
) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        service: The claim service to expose
        sweeper: Started and stopped with the application, if given
        admin_api_key: Key for administrative routes, sent in the
            X-Admin-Key header. Defaults to the service config; with no key
            those routes are disabled.
    """
    admin_key = admin_api_key if admin_api_key is not None else service.config.admin_api_key

    async def require_admin(key: str | None = Security(admin_key_header)) -> None:
        if not admin_key:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Administrative endpoints are disabled",
            )
        if key is None or not secrets.compare_digest(key.encode(), admin_key.encode()):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing admin key",
            )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if sweeper is not None:
            sweeper.start()
        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()

    app = FastAPI(title="PinClaim", version=__version__, lifespan=lifespan)

    @app.exception_handler(PinClaimError)
    async def handle_service_error(request: Request, exc: PinClaimError) -> JSONResponse:
        code = status_code_for(exc)
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=code,
            content=jsonable_encoder(
                {"error": type(exc).__name__, "message": exc.message, "details": exc.details}
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=jsonable_encoder(
                {"error": "ValidationError", "message": "Invalid request", "details": exc.errors()}
            ),
        )

    def public_view(claim: EscrowClaim) -> dict:
        return claim.to_public_dict()

    @app.post("/claims", status_code=status.HTTP_201_CREATED, response_model=CreateClaimResponse)
    async def create_claim(body: CreateClaimRequest) -> CreateClaimResponse:
        handle = await service.create_claim(
            sender_account=body.sender_account,
            amount=body.amount,
            asset_code=body.asset_code,
            notify_address=body.notify_address,
            ttl_seconds=body.ttl_seconds,
            sender_name=body.sender_name,
        )
        return CreateClaimResponse(
            claim_id=handle.claim_id,
            escrow_reference=handle.escrow_reference,
            expires_at=handle.expires_at,
            pin=handle.pin,
            amount=str(handle.amount),
            asset_code=handle.asset_code,
            tx_hash=handle.tx_hash,
            notified=handle.notified,
            warnings=handle.warnings,
        )

    @app.post("/claims/{claim_id}/redeem")
    async def redeem_claim(claim_id: str, body: RedeemRequest) -> JSONResponse:
        result = await service.redeem_claim(claim_id, body.pin, body.claimant_account)
        if result.success:
            payload = RedeemSuccessResponse(
                claim_id=result.claim_id,
                amount=str(result.amount),
                asset_code=result.asset_code,
                claimed_at=result.claimed_at,
                tx_hash=result.tx_hash,
            )
            return JSONResponse(status_code=status.HTTP_200_OK, content=_camel_dump(payload))

        kind = result.error_kind or RedeemErrorKind.NOT_ACTIVE
        error = RedeemErrorResponse(
            claim_id=result.claim_id,
            error_kind=kind.value,
            message=result.message or "",
            remaining_attempts=result.remaining_attempts,
        )
        return JSONResponse(status_code=REDEEM_STATUS_CODES[kind], content=_camel_dump(error))

    @app.get("/claims/{claim_id}")
    async def get_claim(claim_id: str) -> dict:
        return public_view(await service.get_claim(claim_id))

    @app.post("/claims/{claim_id}/refund")
    async def refund_claim(claim_id: str, body: RefundRequest) -> dict:
        return public_view(await service.refund_claim(claim_id, body.sender_account))

    @app.post("/claims/{claim_id}/notify", response_model=NotifyResponse)
    async def resend_notification(claim_id: str, body: NotifyRequest) -> NotifyResponse:
        receipt = await service.resend_notification(claim_id, body.pin, body.notify_address)
        return NotifyResponse(
            message_id=receipt.message_id,
            address=receipt.address,
            provider=receipt.provider,
            status=receipt.status,
        )

    @app.post("/claims/{claim_id}/reset-attempts", dependencies=[Depends(require_admin)])
    async def reset_attempts(claim_id: str) -> dict:
        return public_view(await service.reset_attempts(claim_id))

    @app.get("/healthz")
    async def healthz() -> JSONResponse:
        checks = await service.health_check()
        ok = all(checks.values())
        return JSONResponse(
            status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": ok, **checks},
        )

    return app


def create_app_from_config(
    config: Config | None = None,
    ledger: LedgerGateway | None = None,
    notifier: NotificationGateway | None = None,
    signer: Callable[[str], Keypair] | None = None,
) -> FastAPI:
    """
    Build the deployable application from configuration.

    Without an injected ledger the Stellar gateway is used. Without Twilio
    credentials, development runs keep messages in memory; production
    refuses to start.

    Example:
        >>> app = create_app_from_config()  # uvicorn pinclaim.api:create_app_from_config --factory
    """
    config = config or Config.from_env()

    if ledger is None:
        ledger = StellarLedgerGateway.from_config(config, signer=signer)
    if notifier is None:
        if config.twilio_configured:
            notifier = TwilioNotificationGateway.from_config(config)
        elif config.env == "production":
            raise ConfigurationError("Twilio credentials are required in production")
        else:
            notifier = InMemoryNotificationGateway.from_config(config)

    service = ClaimService.from_config(config, ledger, notifier)
    logger.info(
        f"PinClaim {__version__} starting ({config.env}, {config.storage_backend} storage, "
        f"{ledger.name} ledger, {notifier.name} notifications)"
    )
    return create_app(service, sweeper=ExpirySweeper(service))
