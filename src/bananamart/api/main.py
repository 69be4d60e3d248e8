"""Banana Mart Image Studio — FastAPI Application.

This module defines the FastAPI application factory, all REST API routes,
and the ``main()`` CLI function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :class:`~bananamart.core.config.BananaMartConfig`
  and is passed explicitly to every service built by :func:`create_app`.
- **Accounts** live in a single ``users.json`` document behind
  :class:`~bananamart.core.account_store.JsonFileAccountRepository`.
- **Image generation** is delegated to a remote chat-completions endpoint
  through :class:`~bananamart.core.gateway.GenerationGateway` and orchestrated
  by :class:`~bananamart.core.pipeline.TransformationPipeline`.
- **Generated images** are plain files; history is rebuilt from filenames.
- **Errors** derived from :class:`~bananamart.core.errors.BananaMartError`
  are rendered as ``{"success": false, "error": message}``.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/api/health``               Liveness check
GET       ``/api/transformations``      Transformation catalog (ordered)
POST      ``/api/register``             Create an account
POST      ``/api/login``                Log in
POST      ``/api/user/info``            Account counters
POST      ``/api/user/images``          Generation history
POST      ``/api/generate``             Run a transformation
POST      ``/api/save-image``           Store an image and charge a credit
GET       ``/api/images/{filename}``    Serve a stored image inline
GET       ``/api/download/{filename}``  Serve a stored image as attachment
POST      ``/api/admin/login``          Admin console login
GET       ``/api/admin/users``          List all accounts (admin token)
POST      ``/api/admin/reset-uses``     Override remaining uses (admin token)
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    bananamart

Direct invocation::

    python -m bananamart.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bananamart import __version__
from bananamart.api.models import (
    AdminLoginRequest,
    CredentialsRequest,
    GenerateRequest,
    PhoneRequest,
    ResetUsesRequest,
    SaveImageRequest,
)
from bananamart.core.account_store import AccountRepository, JsonFileAccountRepository
from bananamart.core.accounts import AccountService
from bananamart.core.config import BananaMartConfig, config
from bananamart.core.errors import (
    AuthenticationError,
    AuthorizationError,
    BananaMartError,
    ValidationError,
)
from bananamart.core.gateway import GenerationGateway
from bananamart.core.image_library import ImageLibrary
from bananamart.core.imaging import ImagePayload
from bananamart.core.metering import UsageMeter
from bananamart.core.pipeline import GenerationRequest, TransformationPipeline
from bananamart.core.transformations import (
    Transformation,
    find_transformation,
    load_transformations,
    order_transformations,
)

logger = logging.getLogger(__name__)

IMAGE_CACHE_CONTROL = "public, max-age=31536000, immutable"


@dataclass
class Services:
    """Everything the route handlers need, built once per application."""

    config: BananaMartConfig
    accounts: AccountService
    library: ImageLibrary
    gateway: GenerationGateway
    meter: UsageMeter
    pipeline: TransformationPipeline
    transformations: list[Transformation]


def build_services(
    cfg: BananaMartConfig,
    *,
    repository: AccountRepository | None = None,
    gateway: GenerationGateway | None = None,
) -> Services:
    """Wire the service graph for *cfg*.

    Args:
        cfg: Configuration to build from.
        repository: Account storage; defaults to ``cfg.users_file``.
        gateway: Generation gateway; defaults to one built from *cfg*.
    """
    accounts = AccountService(
        repository or JsonFileAccountRepository(cfg.users_file),
        initial_uses=cfg.initial_uses,
    )
    library = ImageLibrary(cfg.images_dir)
    gateway = gateway or GenerationGateway(cfg)
    meter = UsageMeter(accounts, library)
    pipeline = TransformationPipeline(gateway, accounts, meter, cfg.watermark_text)
    return Services(
        config=cfg,
        accounts=accounts,
        library=library,
        gateway=gateway,
        meter=meter,
        pipeline=pipeline,
        transformations=load_transformations(cfg.transformations_file),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_admin(
    services: Services = Depends(get_services),
    admin_token: str | None = Header(default=None),
) -> None:
    """Reject requests whose ``admin-token`` header is not the shared secret."""
    if admin_token != services.config.admin_token:
        raise AuthorizationError("Unauthorized")


# ---------------------------------------------------------------------------
# Error rendering.
# ---------------------------------------------------------------------------


async def handle_service_error(request: Request, exc: BananaMartError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render framework HTTP errors (404s included) in the service error envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=exc.headers,
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"success": False, "error": message})


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api")


@router.get("/health")
async def health(services: Services = Depends(get_services)) -> dict:
    """Liveness check."""
    return {"status": "ok", "dataDir": str(services.config.data_dir)}


@router.get("/transformations")
async def list_transformations(
    order: list[str] | None = Query(default=None),
    services: Services = Depends(get_services),
) -> dict:
    """Return the transformation catalog.

    Args:
        order: Optional saved display order (repeatable ``order`` query
            parameter of transformation titles).
    """
    ordered = order_transformations(services.transformations, order)
    return {"transformations": [t.model_dump(by_alias=True) for t in ordered]}


@router.post("/register")
def register(req: CredentialsRequest, services: Services = Depends(get_services)) -> dict:
    """Create an account with the initial credit allowance."""
    account = services.accounts.register(req.phone, req.password)
    return {"success": True, "message": "Registration successful", "user": account.summary()}


@router.post("/login")
def login(req: CredentialsRequest, services: Services = Depends(get_services)) -> dict:
    """Check credentials and return the account summary."""
    account = services.accounts.login(req.phone, req.password)
    return {"success": True, "message": "Login successful", "user": account.summary()}


@router.post("/user/info")
def user_info(req: PhoneRequest, services: Services = Depends(get_services)) -> dict:
    """Return an account's counters and timestamps."""
    account = services.accounts.get_user_info(req.phone)
    return {"success": True, "user": account.details()}


@router.post("/user/images")
def user_images(req: PhoneRequest, services: Services = Depends(get_services)) -> dict:
    """Return a user's stored images, newest first."""
    entries = services.library.history(req.phone)
    return {"success": True, "images": [entry.to_dict() for entry in entries]}


@router.post("/generate")
def generate(req: GenerateRequest, services: Services = Depends(get_services)) -> dict:
    """Run a transformation, watermark the result, store it and charge a credit.

    Returns:
        Dictionary with ``success``, ``imageUrl``, ``text``,
        ``secondaryImageUrl`` and, when an image was produced, ``filename``,
        ``remainingUses`` and ``imagesGenerated``.
    """
    transformation = find_transformation(services.transformations, req.transformation_title)
    request = GenerationRequest(
        phone=req.phone,
        transformation=transformation,
        primary=ImagePayload.from_data_url(req.primary_image),
        secondary=ImagePayload.from_data_url(req.secondary_image) if req.secondary_image else None,
        mask=ImagePayload.from_data_url(req.mask) if req.mask else None,
        custom_prompt=req.custom_prompt,
    )
    result = services.pipeline.run(request)
    return {"success": True, **result.to_dict()}


@router.post("/save-image")
def save_image(req: SaveImageRequest, services: Services = Depends(get_services)) -> dict:
    """Store an already generated image and charge the owner one credit."""
    if req.image_url.startswith(("http://", "https://")):
        image = services.gateway.fetch_image(req.image_url)
    elif req.image_url.startswith("data:image"):
        image = ImagePayload.from_data_url(req.image_url)
    else:
        raise ValidationError("Invalid image format")

    receipt = services.meter.record_generation(
        req.phone,
        image,
        req.transformation_title,
        req.step,
        filename=req.filename,
    )
    return {"success": True, **receipt.to_dict()}


@router.get("/images/{filename}")
def get_image(filename: str, services: Services = Depends(get_services)) -> FileResponse:
    """Serve a stored image inline with long-lived cache headers.

    Raises:
        HTTPException: 404 if the file is missing or not an image.
    """
    path = services.library.resolve(filename)
    if path is None:
        raise HTTPException(status_code=404, detail="Image not found")
    return FileResponse(path, headers={"Cache-Control": IMAGE_CACHE_CONTROL})


@router.get("/download/{filename}")
def download_image(filename: str, services: Services = Depends(get_services)) -> FileResponse:
    """Serve a stored image as a download attachment.

    Raises:
        HTTPException: 404 if the file is missing or not an image.
    """
    path = services.library.resolve(filename)
    if path is None:
        raise HTTPException(status_code=404, detail="Image not found")
    return FileResponse(path, filename=path.name)


@router.post("/admin/login")
def admin_login(req: AdminLoginRequest, services: Services = Depends(get_services)) -> dict:
    """Check the static admin credentials and hand out the shared token."""
    cfg = services.config
    if req.username != cfg.admin_username or req.password != cfg.admin_password:
        raise AuthenticationError("Invalid administrator credentials")
    logger.info("Administrator logged in")
    return {"success": True, "token": cfg.admin_token}


@router.get("/admin/users", dependencies=[Depends(require_admin)])
def admin_users(services: Services = Depends(get_services)) -> dict:
    """List every account, passwords included, with aggregate tallies."""
    return {"success": True, **services.accounts.list_all()}


@router.post("/admin/reset-uses", dependencies=[Depends(require_admin)])
def admin_reset_uses(req: ResetUsesRequest, services: Services = Depends(get_services)) -> dict:
    """Set an account's remaining uses to an arbitrary non-negative value."""
    account = services.accounts.reset_uses(req.phone, req.new_uses)
    return {
        "success": True,
        "message": f"Remaining uses of {account.phone} reset to {account.remaining_uses}",
        "user": account.details(),
    }


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log startup and release the gateway's HTTP connections on shutdown."""
    services: Services = app.state.services
    logger.info(
        f"Banana Mart {__version__} serving data from {services.config.data_dir} "
        f"({len(services.transformations)} transformations)"
    )

    yield

    services.gateway.close()
    logger.info("Gateway client closed on shutdown.")


def create_app(
    cfg: BananaMartConfig | None = None,
    *,
    repository: AccountRepository | None = None,
    gateway: GenerationGateway | None = None,
) -> FastAPI:
    """Build a FastAPI application around *cfg*.

    Args:
        cfg: Configuration; the global ``config`` when omitted.
        repository: Optional account storage override.
        gateway: Optional gateway override.
    """
    cfg = cfg or config

    application = FastAPI(
        title="Banana Mart Image Studio",
        description="Metered AI image transformations over a remote multimodal model.",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.services = build_services(cfg, repository=repository, gateway=gateway)

    application.add_exception_handler(BananaMartError, handle_service_error)
    application.add_exception_handler(StarletteHTTPException, handle_http_exception)
    application.add_exception_handler(RequestValidationError, handle_request_validation_error)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from
    :data:`~bananamart.core.config.config` (``BANANAMART_SERVER_HOST``,
    ``BANANAMART_SERVER_PORT``, ``BANANAMART_LOG_LEVEL``).

    This function is registered as the ``bananamart`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "bananamart.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
