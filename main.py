import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Tuple, Type

from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from blobs import LocalBlobStore
from broadcaster import ChangeBroadcaster, Observer
from config import Settings
from database import db, ensure_indexes
from errors import EntityError, ValidationError
from pipeline import MutationPipeline
from schemas import (
    CATEGORY,
    CONTACT,
    ENTITY_KINDS,
    FAQ,
    ORDER,
    PRODUCT,
    PROFILE,
    SUBCATEGORY,
    EntityInput,
    EntityKind,
)

settings = Settings.from_env()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")

router = APIRouter()


# Helpers

def get_pipeline(request: Request) -> MutationPipeline:
    return request.app.state.pipeline


def describe_validation_error(e: PydanticValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err['msg']}" if loc else err["msg"]


async def read_input(
    request: Request, model: Type[EntityInput], file_field: Optional[str] = None
) -> Tuple[EntityInput, Optional[UploadFile]]:
    """Parse a JSON or form body into `model`, picking up the uploaded file if any.

    Empty form values count as absent so defaults apply.
    """
    upload = None
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(FORM_TYPES):
        form = await request.form()
        data: Dict[str, Any] = {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key == file_field and value.filename:
                    upload = value
                continue
            if value != "":
                data[key] = value
    else:
        body = await request.body()
        try:
            data = json.loads(body) if body else {}
        except json.JSONDecodeError:
            raise ValidationError("Invalid JSON body")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
    try:
        payload = model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(describe_validation_error(e)) from e
    return payload, upload


async def create_entity(request: Request, pipeline: MutationPipeline, kind: EntityKind) -> Dict[str, Any]:
    payload, upload = await read_input(request, kind.create_model, kind.image_field)
    data = await run_in_threadpool(pipeline.create, kind, payload, upload)
    return {"success": True, "data": data}


async def update_entity(
    request: Request, pipeline: MutationPipeline, kind: EntityKind, entity_id: str
) -> Dict[str, Any]:
    payload, upload = await read_input(request, kind.update_model, kind.image_field)
    data = await run_in_threadpool(pipeline.update, kind, entity_id, payload, upload)
    return {"success": True, "message": f"{kind.label} updated", "data": data}


async def delete_entity(pipeline: MutationPipeline, kind: EntityKind, entity_id: str) -> Dict[str, Any]:
    data = await run_in_threadpool(pipeline.delete, kind, entity_id)
    return {"success": True, "message": f"{kind.label} deleted", "data": data}


@router.get("/")
def read_root():
    return {"success": True, "message": "Catalog Admin Backend Ready"}


@router.get("/test")
def test_database(request: Request):
    database = request.app.state.database
    response = {
        "success": True,
        "message": "Backend is LIVE!",
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "connection_status": "Not Connected",
        "collections": [],
        "observers": request.app.state.broadcaster.observer_count,
    }
    try:
        if database is not None:
            response["collections"] = database.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Categories
@router.get("/categories")
def list_categories(pipeline: MutationPipeline = Depends(get_pipeline)):
    return {"success": True, "data": pipeline.list(CATEGORY)}


@router.get("/categories/{category_id}")
def get_category(category_id: str, pipeline: MutationPipeline = Depends(get_pipeline)):
    return {"success": True, "data": pipeline.get(CATEGORY, category_id)}


@router.post("/categories", status_code=201)
async def create_category(request: Request, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await create_entity(request, pipeline, CATEGORY)


@router.put("/categories/{category_id}")
async def update_category(category_id: str, request: Request, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await update_entity(request, pipeline, CATEGORY, category_id)


@router.delete("/categories/{category_id}")
async def delete_category(category_id: str, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await delete_entity(pipeline, CATEGORY, category_id)


# Subcategories
@router.get("/subcategories")
def list_subcategories(category: Optional[str] = None, pipeline: MutationPipeline = Depends(get_pipeline)):
    filt = {"categoryId": category} if category else None
    return {"success": True, "data": pipeline.list(SUBCATEGORY, filt)}


@router.get("/subcategories/{subcategory_id}")
def get_subcategory(subcategory_id: str, pipeline: MutationPipeline = Depends(get_pipeline)):
    return {"success": True, "data": pipeline.get(SUBCATEGORY, subcategory_id)}


@router.post("/subcategories", status_code=201)
async def create_subcategory(request: Request, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await create_entity(request, pipeline, SUBCATEGORY)


@router.put("/subcategories/{subcategory_id}")
async def update_subcategory(subcategory_id: str, request: Request, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await update_entity(request, pipeline, SUBCATEGORY, subcategory_id)


@router.delete("/subcategories/{subcategory_id}")
async def delete_subcategory(subcategory_id: str, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await delete_entity(pipeline, SUBCATEGORY, subcategory_id)


# Products
@router.get("/products")
def list_products(
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    filt: Dict[str, Any] = {}
    if category:
        filt["categoryId"] = category
    if subcategory:
        filt["subcategoryId"] = subcategory
    return {"success": True, "data": pipeline.list(PRODUCT, filt)}


@router.get("/products/{product_id}")
def get_product(product_id: str, pipeline: MutationPipeline = Depends(get_pipeline)):
    return {"success": True, "data": pipeline.get(PRODUCT, product_id)}


@router.post("/products", status_code=201)
async def create_product(request: Request, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await create_entity(request, pipeline, PRODUCT)


@router.put("/products/{product_id}")
async def update_product(product_id: str, request: Request, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await update_entity(request, pipeline, PRODUCT, product_id)


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await delete_entity(pipeline, PRODUCT, product_id)


# Orders
@router.get("/orders")
def list_orders(pipeline: MutationPipeline = Depends(get_pipeline)):
    return {"success": True, "data": pipeline.list(ORDER)}


@router.post("/orders", status_code=201)
async def create_order(request: Request, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await create_entity(request, pipeline, ORDER)


# Profiles
@router.get("/profiles")
def list_profiles(pipeline: MutationPipeline = Depends(get_pipeline)):
    return {"success": True, "data": pipeline.list(PROFILE)}


@router.post("/profiles", status_code=201)
async def create_profile(request: Request, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await create_entity(request, pipeline, PROFILE)


# FAQ
@router.get("/faqs")
def list_faqs(pipeline: MutationPipeline = Depends(get_pipeline)):
    return {"success": True, "data": pipeline.list(FAQ)}


@router.post("/faqs", status_code=201)
async def create_faq(request: Request, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await create_entity(request, pipeline, FAQ)


# Contact
@router.get("/contacts")
def list_contacts(pipeline: MutationPipeline = Depends(get_pipeline)):
    return {"success": True, "data": pipeline.list(CONTACT)}


@router.post("/contacts", status_code=201)
async def create_contact(request: Request, pipeline: MutationPipeline = Depends(get_pipeline)):
    return await create_entity(request, pipeline, CONTACT)


# Real-time change stream
async def forward_events(websocket: WebSocket, observer: Observer) -> None:
    while True:
        message = await observer.next_message()
        if message is None:
            # Dropped by the broadcaster for falling behind.
            await websocket.close(code=1013)
            return
        await websocket.send_json(message)


@router.websocket("/ws")
async def change_stream(websocket: WebSocket):
    broadcaster: ChangeBroadcaster = websocket.app.state.broadcaster
    await websocket.accept()
    observer = broadcaster.connect()
    sender = asyncio.create_task(forward_events(websocket, observer))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        broadcaster.disconnect(observer)
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)


# Error envelope
async def entity_error_handler(request: Request, exc: EntityError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)})


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"success": False, "message": message})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"success": False, "message": str(exc)})


@asynccontextmanager
async def lifespan(app: FastAPI):
    await run_in_threadpool(ensure_indexes, app.state.database, ENTITY_KINDS)
    logger.info("Admin backend ready")
    yield


def create_app(database: Any = db, settings: Settings = settings) -> FastAPI:
    # Routes live on a module-level router and collaborators on app.state so
    # tests can build an app around their own database and upload directory.
    blob_store = LocalBlobStore(settings.upload_dir)
    broadcaster = ChangeBroadcaster()

    app = FastAPI(title="Catalog Admin API", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.broadcaster = broadcaster
    app.state.pipeline = MutationPipeline(database, broadcaster, blob_store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(EntityError, entity_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(router)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
