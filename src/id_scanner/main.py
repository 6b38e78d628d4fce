"""FastAPI application for scanning ID documents and saving the reviewed fields."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Iterable, Optional

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    HTTPException,
    Query,
    Request,
    UploadFile,
    status,
)
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from openai import OpenAI

from .config import Settings, configure_logging
from .errors import DuplicateKeyError, MissingInputError, PersistenceError, ValidationFailedError
from .extraction import ExtractionClient, encode_image_bytes
from .schemas import (
    ExtractionRequest,
    ExtractionResponse,
    IngestResponse,
    RecordInput,
    RecordListResponse,
    SaveResponse,
)
from .store import RecordStore, build_store
from .workflow import IngestWorkflow

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES: Iterable[str] = {
    "image/jpeg",
    "image/png",
    "image/jpg",
    "image/webp",
}

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def build_extractor(settings: Settings) -> ExtractionClient:
    """Create the extraction client, with an OpenAI client when a key is set."""

    client = None
    if settings.openai_api_key and not settings.simulate_extraction:
        client = OpenAI(
            api_key=settings.openai_api_key,
            timeout=settings.openai_timeout,
            max_retries=0,
        )
    elif settings.simulate_extraction:
        logger.warning("Simulated extraction enabled; the OpenAI API will not be called")
    else:
        logger.warning("No OpenAI API key configured; extraction will return simulated data")

    return ExtractionClient(
        client,
        model=settings.openai_model,
        max_tokens=settings.openai_max_tokens,
        simulate=settings.simulate_extraction,
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[RecordStore] = None,
    extractor: Optional[ExtractionClient] = None,
) -> FastAPI:
    """Assemble the application from explicitly constructed components."""

    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    store = store or build_store(settings.record_store, settings.database_url)
    extractor = extractor or build_extractor(settings)
    workflow = IngestWorkflow(
        extractor,
        store,
        recent_limit=settings.recent_limit,
        regenerate_duplicate_ids=settings.regenerate_duplicate_ids,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting ID scanner (store=%s)", type(store).__name__)
        store.open()
        try:
            yield
        finally:
            logger.info("Shutting down ID scanner")
            store.close()

    app = FastAPI(
        title="ID Scanner API",
        version="0.1.0",
        description=(
            "Upload or photograph an identity document to extract its holder's "
            "name, ID number, dates and address, review them and save the record."
        ),
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.workflow = workflow
    app.include_router(router)
    return app


def get_workflow(request: Request) -> IngestWorkflow:
    """Dependency returning the workflow owned by the running application."""

    return request.app.state.workflow


router = APIRouter()


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def scan_page(request: Request):
    """Camera capture / upload page with the review form."""

    return templates.TemplateResponse(request, "scan.html", {})


@router.post("/extract", response_model=ExtractionResponse, status_code=status.HTTP_200_OK)
def extract_fields(
    payload: ExtractionRequest,
    workflow: IngestWorkflow = Depends(get_workflow),
) -> ExtractionResponse:
    """Extract identity fields from a base64 image without saving them."""

    try:
        result = workflow.extract(payload.image or "")
    except MissingInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Image data is required",
        ) from exc

    return ExtractionResponse.from_result(result)


@router.post(
    "/extract/upload", response_model=ExtractionResponse, status_code=status.HTTP_200_OK
)
async def extract_fields_from_upload(
    image: UploadFile = File(..., description="Image of the ID document to read."),
    workflow: IngestWorkflow = Depends(get_workflow),
) -> ExtractionResponse:
    """Process an uploaded ID image and return the extracted fields."""

    if image.content_type not in SUPPORTED_IMAGE_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unsupported file type. Upload a JPEG, PNG or WEBP image.",
        )

    contents = await image.read()

    try:
        data_url = encode_image_bytes(contents, image.content_type)
        result = await run_in_threadpool(workflow.extract, data_url)
    except MissingInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    finally:
        await image.close()

    return ExtractionResponse.from_result(result)


@router.post("/ingest", response_model=IngestResponse, status_code=status.HTTP_200_OK)
def ingest_image(
    payload: ExtractionRequest,
    workflow: IngestWorkflow = Depends(get_workflow),
) -> IngestResponse:
    """Extract identity fields and save them immediately when possible."""

    try:
        result = workflow.ingest(payload.image or "")
    except MissingInputError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Image data is required",
        ) from exc

    return IngestResponse(
        persisted=result.persisted,
        source=result.source,
        fields=result.fields,
        record=result.record,
    )


@router.get("/records", response_class=HTMLResponse)
def save_record_form(
    request: Request,
    name: str = Query("", description="Full name."),
    id_number: str = Query("", alias="id", description="Document number."),
    dob: str = Query("", description="Date of birth."),
    expiry: Optional[str] = Query(None, description="Expiry date."),
    address: Optional[str] = Query(None, description="Address."),
    workflow: IngestWorkflow = Depends(get_workflow),
):
    """Save reviewed fields submitted by browser navigation and render the outcome."""

    record_input = RecordInput(
        full_name=name,
        id_number=id_number,
        date_of_birth=dob,
        expiry_date=expiry,
        address=address,
    )
    logger.info("Save requested for ID number %s", id_number.strip() or "<blank>")

    try:
        outcome = workflow.save(record_input)
    except ValidationFailedError as exc:
        return templates.TemplateResponse(
            request,
            "save_missing.html",
            {"missing": exc.missing},
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    except DuplicateKeyError as exc:
        return templates.TemplateResponse(
            request,
            "save_duplicate.html",
            {"id_number": exc.id_number, "existing": exc.existing},
            status_code=status.HTTP_409_CONFLICT,
        )
    except PersistenceError as exc:
        logger.exception("Failed to save record")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to save ID information: {exc}",
        ) from exc

    return templates.TemplateResponse(
        request,
        "save_success.html",
        {"record": outcome.record, "recent": outcome.recent},
    )


@router.post("/records", response_model=SaveResponse, status_code=status.HTTP_201_CREATED)
def save_record(
    record_input: RecordInput,
    workflow: IngestWorkflow = Depends(get_workflow),
) -> SaveResponse:
    """Save reviewed fields submitted as JSON."""

    try:
        outcome = workflow.save(record_input)
    except ValidationFailedError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "missing": exc.missing},
        ) from exc
    except DuplicateKeyError as exc:
        existing = exc.existing.model_dump(mode="json", by_alias=True) if exc.existing else None
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "existing": existing},
        ) from exc
    except PersistenceError as exc:
        logger.exception("Failed to save record")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to save ID information: {exc}",
        ) from exc

    return SaveResponse(record=outcome.record, recent=outcome.recent)


@router.get("/records/list", response_model=RecordListResponse)
def list_records(workflow: IngestWorkflow = Depends(get_workflow)) -> RecordListResponse:
    """Return every saved record, most recent first."""

    try:
        records = workflow.list_records()
    except PersistenceError as exc:
        logger.exception("Failed to list records")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch records: {exc}",
        ) from exc

    logger.info("Listing %d records", len(records))
    return RecordListResponse(records=records, count=len(records))


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request, workflow: IngestWorkflow = Depends(get_workflow)):
    """Table of all saved records."""

    return templates.TemplateResponse(
        request, "dashboard.html", {"records": workflow.list_records()}
    )


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> dict[str, str]:
    """Simple endpoint to verify that the API is running."""

    return {"status": "ok"}


def run() -> None:
    """Console entry point serving the application with uvicorn."""

    import uvicorn

    settings = Settings.from_env()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
