import os
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from config import settings
from errors import ArtRiseError
from jobs import AuctionJobs
from logger import logger
from notifications import get_notifier
from routers import all_routers

app = FastAPI(title="artRise Auction API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logger.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
    except Exception as e:
        logger.exception("Unhandled error rid=%s: %s", rid, e)
        resp = JSONResponse({"success": False, "error": str(e), "rid": rid}, status_code=500)
    logger.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
    resp.headers["X-Request-ID"] = rid
    return resp


@app.exception_handler(ArtRiseError)
async def artrise_error_handler(request: Request, exc: ArtRiseError):
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse({"success": False, "error": "Validation error", "errors": errors}, status_code=400)


for router in all_routers:
    app.include_router(router)


@app.on_event("startup")
async def startup_event():
    logger.info("artRise API starting up...")
    if database.db is None:
        logger.warning("No database configured; background jobs not started")
        return

    try:
        database.ensure_indexes(database.db)
    except PyMongoError as e:
        logger.error("Failed to ensure indexes: %s", e)

    if settings.SCHEDULER_ENABLED:
        app.state.jobs = AuctionJobs(database.db, get_notifier())
        app.state.jobs.start()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")


@app.on_event("shutdown")
async def shutdown_event():
    jobs = getattr(app.state, "jobs", None)
    if jobs is not None:
        await jobs.stop()


@app.get("/")
def read_root():
    return {"message": "Welcome to artRise API"}


@app.get("/schema")
def get_schema_info():
    """Expose schema classes for tooling."""
    from schemas import Artwork, Auction, Offer, Order, Payment, ShippingAddress, User

    return {
        model.__name__.lower(): model.model_json_schema(by_alias=True)
        for model in (User, Auction, Artwork, Offer, Order, Payment, ShippingAddress)
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
        "scheduler": "✅ Running" if getattr(app.state, "jobs", None) and app.state.jobs.running else "⏸ Stopped",
    }

    db = database.db
    if db is not None:
        response["database"] = "✅ Available"
        response["database_name"] = db.name
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except PyMongoError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if settings.DATABASE_URL else "❌ Not Set"
    response["database_name"] = "✅ Set" if settings.DATABASE_NAME else "❌ Not Set"
    return response


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
