import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from furniview import __version__, config

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

from furniview.auth import AuthGateway, AuthUser, LocalAuth, SupabaseAuth
from furniview.catalog import FurnitureCatalog
from furniview.companies import CompanyService
from furniview.companies.adapters import LocalCompanyStore, SupabaseCompanyStore
from furniview.conversion import ConversionService, FurnitureRecord
from furniview.conversion.adapters import (
    AssimpConverter,
    LocalFurnitureStore,
    LocalObjectStorage,
    SupabaseFurnitureStore,
    SupabaseObjectStorage,
)
from furniview.errors import AuthError, DuplicateUser, EmptyUpload, InvalidState, RecordNotFound, UploadTooLarge
from furniview.exception_handlers import setup_exception_handlers

logger = logging.getLogger(__name__)


@dataclass
class Services:
    conversion: ConversionService
    # anonymous reads of converted furniture
    catalog: FurnitureCatalog
    # member reads across every status
    company_catalog: FurnitureCatalog
    companies: CompanyService
    auth: AuthGateway


SERVICES: Services | None = None


def build_services(backend: str | None = None) -> Services:
    """Wire gateways for the configured backend ("supabase" or "local")."""
    backend = backend or config.BACKEND
    converter = AssimpConverter(config.ASSIMP_BIN, config.ASSIMP_ARGS, timeout_sec=config.CONVERSION_TIMEOUT_SEC)
    if backend == "local":
        data_dir = str(config.DATA_DIR)
        storage = LocalObjectStorage(data_dir)
        store = LocalFurnitureStore(data_dir)
        public_storage, public_store = storage, store
        company_store = LocalCompanyStore(data_dir)
        auth: AuthGateway = LocalAuth(data_dir, session_ttl_sec=config.LOCAL_SESSION_TTL_SEC)
    elif backend == "supabase":
        from furniview.supabase_client import get_anon_client, get_service_client, new_session_client

        service_client = get_service_client()
        anon_client = get_anon_client()
        storage = SupabaseObjectStorage(service_client)
        store = SupabaseFurnitureStore(service_client)
        public_storage = SupabaseObjectStorage(anon_client)
        public_store = SupabaseFurnitureStore(anon_client)
        company_store = SupabaseCompanyStore(service_client)
        auth = SupabaseAuth(anon_client, new_session_client)
    else:
        raise ValueError(f"unknown backend: {backend}")

    conversion = ConversionService(
        store,
        storage,
        converter,
        original_bucket=config.ORIGINAL_BUCKET,
        gltf_bucket=config.GLTF_BUCKET,
        workers=config.WORKERS,
    )
    return Services(
        conversion=conversion,
        catalog=FurnitureCatalog(public_store, public_storage, gltf_bucket=config.GLTF_BUCKET),
        company_catalog=FurnitureCatalog(store, storage, gltf_bucket=config.GLTF_BUCKET),
        companies=CompanyService(company_store),
        auth=auth,
    )


def configure(services: Services | None) -> None:
    global SERVICES
    SERVICES = services


def _services() -> Services:
    if SERVICES is None:
        raise RuntimeError("services are not configured")
    return SERVICES


@asynccontextmanager
async def lifespan(app: FastAPI):
    if SERVICES is None:
        configure(build_services())
    logger.info("Starting Furniview backend (%s backend)", config.BACKEND)
    await _services().conversion.start()
    yield
    logger.info("Shutting down Furniview backend")
    await _services().conversion.stop()


app = FastAPI(
    title="Furniview Backend",
    version=os.getenv("FURNIVIEW_VERSION", __version__),
    description=(
        "REST API for furniture companies to upload 3D models, which are "
        "converted to GLTF for interactive assembly instructions."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
setup_exception_handlers(app)

if config.BACKEND == "local":
    app.mount(
        f"/storage/{config.GLTF_BUCKET}",
        StaticFiles(directory=str(config.DATA_DIR / "buckets" / config.GLTF_BUCKET), check_dir=False),
        name="gltf-files",
    )


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class CredentialsRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class CompanyCreateRequest(BaseModel):
    name: str | None = None
    # key used by the original dashboard form
    companyName: str | None = None
    website_url: str | None = None
    contact_email: str | None = None


class FurnitureUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def _bearer_token(authorization: str | None = Header(None)) -> str:
    if not authorization:
        raise _error(401, "unauthorized", "missing bearer token")
    scheme, _, rest = authorization.partition(" ")
    token = rest.strip()
    if scheme.lower() != "bearer" or not token:
        raise _error(401, "unauthorized", "missing bearer token")
    return token


def current_user(token: str = Depends(_bearer_token)) -> AuthUser:
    user = _services().auth.get_user(token)
    if user is None:
        raise _error(401, "unauthorized", "invalid or expired token")
    logger.debug("Authenticated user %s", user.id)
    return user


@app.get("/", response_class=PlainTextResponse)
def root() -> str:
    return "Furniview Backend is running!"


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


def _credentials(body: CredentialsRequest | None) -> tuple[str, str]:
    body = body or CredentialsRequest()
    if not body.email or not body.password:
        raise _error(400, "bad_request", "Email and password are required.")
    return body.email, body.password


@app.post("/api/auth/login")
def login(body: CredentialsRequest | None = None) -> dict[str, Any]:
    email, password = _credentials(body)
    try:
        result = _services().auth.sign_in(email, password)
    except AuthError as e:
        raise _error(401, "unauthorized", str(e))
    return {"message": "Login successful.", **result}


@app.post("/api/auth/signup", status_code=status.HTTP_201_CREATED)
def signup(body: CredentialsRequest | None = None) -> dict[str, Any]:
    email, password = _credentials(body)
    try:
        result = _services().auth.sign_up(email, password)
    except DuplicateUser as e:
        raise _error(409, "conflict", str(e))
    return {"message": "Signup successful.", **result}


# ---------------------------------------------------------------------------
# Public furniture catalog
# ---------------------------------------------------------------------------

@app.get("/api/furniture")
def list_furniture() -> list[dict[str, Any]]:
    return _services().catalog.list_published()


@app.get("/api/furniture/{furniture_id}")
def get_furniture(furniture_id: str) -> dict[str, Any]:
    try:
        return _services().catalog.get_published(furniture_id)
    except RecordNotFound as e:
        raise _error(404, "not_found", str(e))


# ---------------------------------------------------------------------------
# Furniture management (company members)
# ---------------------------------------------------------------------------

async def _load_for_member(furniture_id: str, user: AuthUser) -> FurnitureRecord:
    svc = _services()
    try:
        record = await asyncio.to_thread(svc.conversion.load, furniture_id)
    except RecordNotFound:
        raise _error(404, "not_found", "furniture not found")
    if not await asyncio.to_thread(svc.companies.is_member, user.id, record.company_id):
        raise _error(404, "not_found", "furniture not found")
    return record


@app.patch("/api/furniture/{furniture_id}")
async def update_furniture(
    furniture_id: str, body: FurnitureUpdateRequest, user: AuthUser = Depends(current_user)
) -> dict[str, Any]:
    await _load_for_member(furniture_id, user)
    try:
        record = await _services().conversion.update_details(
            furniture_id, name=body.name, description=body.description
        )
    except ValueError as e:
        raise _error(400, "bad_request", str(e))
    except RecordNotFound:
        raise _error(404, "not_found", "furniture not found")
    return record.data


@app.delete("/api/furniture/{furniture_id}")
async def delete_furniture(furniture_id: str, user: AuthUser = Depends(current_user)) -> dict[str, str]:
    await _load_for_member(furniture_id, user)
    try:
        await _services().conversion.delete(furniture_id)
    except RecordNotFound:
        raise _error(404, "not_found", "furniture not found")
    return {"message": "Furniture deleted successfully."}


@app.post("/api/furniture/{furniture_id}/conversion", status_code=status.HTTP_202_ACCEPTED)
async def retry_conversion(furniture_id: str, user: AuthUser = Depends(current_user)) -> dict[str, Any]:
    await _load_for_member(furniture_id, user)
    try:
        record = await _services().conversion.retry(furniture_id)
    except InvalidState as e:
        raise _error(409, "conflict", str(e))
    return {"message": "Conversion queued.", "furnitureRecord": record.data}


@app.post("/api/upload", status_code=status.HTTP_201_CREATED)
async def upload_furniture(
    furnitureFile: UploadFile | None = File(None),
    file: UploadFile | None = File(None),
    name: str | None = Form(None),
    description: str | None = Form(None),
    company_id: str | None = Form(None),
    user: AuthUser = Depends(current_user),
) -> JSONResponse:
    """Accept a model upload for one of the user's companies.

    The multipart part is named "furnitureFile" ("file" is accepted too).
    Without company_id the user's only company is used. Conversion runs in
    the background; the response carries the freshly inserted record.
    """
    upload = furnitureFile or file
    if upload is None:
        raise _error(400, "bad_request", "No file uploaded.")

    svc = _services()
    if not company_id:
        company_id = await asyncio.to_thread(svc.companies.default_company_for, user.id)
        if not company_id:
            raise _error(400, "bad_request", "company_id is required.")
    elif not await asyncio.to_thread(svc.companies.is_member, user.id, company_id):
        raise _error(403, "forbidden", "not a member of this company")

    logger.info("Upload of %s (%s) by user %s for company %s", upload.filename, upload.content_type, user.id, company_id)

    async def read_chunk(n: int) -> bytes:
        return await upload.read(n)

    try:
        record = await svc.conversion.create_from_upload(
            company_id,
            upload.filename,
            upload.content_type,
            read_chunk,
            name=name,
            description=description,
            max_upload_mb=config.MAX_UPLOAD_MB,
        )
    except UploadTooLarge as e:
        raise _error(413, "payload_too_large", str(e))
    except EmptyUpload as e:
        raise _error(400, "bad_request", str(e))

    body = {
        "message": "File upload accepted, processing initiated.",
        "furnitureRecord": record.data,
    }
    headers = {"Location": f"/api/furniture/{record.id}"}
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=body, headers=headers)


# ---------------------------------------------------------------------------
# Companies
# ---------------------------------------------------------------------------

@app.post("/api/companies", status_code=status.HTTP_201_CREATED)
def create_company(body: CompanyCreateRequest, user: AuthUser = Depends(current_user)) -> dict[str, Any]:
    try:
        company = _services().companies.create_company(
            user.id,
            body.name or body.companyName or "",
            website_url=body.website_url,
            contact_email=body.contact_email,
        )
    except ValueError:
        raise _error(400, "bad_request", "Company name is required.")
    return {"message": "Company created successfully.", "company": {**company.data, "role": "admin"}}


@app.get("/api/companies")
def list_companies(user: AuthUser = Depends(current_user)) -> list[dict[str, Any]]:
    return _services().companies.list_for_user(user.id)


@app.get("/api/companies/{company_id}")
def get_company(company_id: str, user: AuthUser = Depends(current_user)) -> dict[str, Any]:
    try:
        return _services().companies.get_for_member(user.id, company_id)
    except RecordNotFound:
        raise _error(404, "not_found", "company not found")


@app.get("/api/companies/{company_id}/furniture")
def list_company_furniture(company_id: str, user: AuthUser = Depends(current_user)) -> list[dict[str, Any]]:
    svc = _services()
    try:
        svc.companies.require_member(user.id, company_id)
    except RecordNotFound:
        raise _error(404, "not_found", "company not found")
    return svc.company_catalog.list_for_company(company_id)


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:3001). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "3001"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("furniview.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
