from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import IntegrityError
from strawberry.fastapi import GraphQLRouter

from fittrack.api.attendance.routes import router as attendance_router
from fittrack.api.audit.routes import router as audit_router
from fittrack.api.auth.routes import router as auth_router
from fittrack.api.bookings.routes import router as bookings_router
from fittrack.api.classes.routes import router as classes_router
from fittrack.api.content.routes import router as content_router
from fittrack.api.notifications.routes import router as notifications_router
from fittrack.api.payments.routes import router as payments_router
from fittrack.api.plans.routes import router as plans_router
from fittrack.api.subscriptions.routes import router as subscriptions_router
from fittrack.api.users.routes import router as users_router
from fittrack.core import settings
from fittrack.core.errors import FitTrackError
from fittrack.core.logging_config import get_logger, setup_logging
from fittrack.db.postgresql import init_models
from fittrack.graphql.context import build_context
from fittrack.graphql.schema import schema

setup_logging()
logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    logger.info("FitTrack API started")
    yield


app = FastAPI(title="FitTrack API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FitTrackError)
async def fittrack_error_handler(request: Request, exc: FitTrackError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return JSONResponse(
        status_code=400,
        content={"message": message, "errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors]},
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(status_code=400, content={"message": "Request conflicts with existing data"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=str(settings.UPLOAD_DIR)), name="uploads")

for router in (
    auth_router,
    users_router,
    classes_router,
    bookings_router,
    attendance_router,
    plans_router,
    subscriptions_router,
    payments_router,
    content_router,
    notifications_router,
    audit_router,
):
    app.include_router(router)

graphql_app = GraphQLRouter(
    schema=schema,
    context_getter=build_context,
    graphql_ide="graphiql" if settings.ENVIRONMENT != "production" else None,
)
app.include_router(graphql_app, prefix="/graphql")


@app.get("/api/health")
async def health():
    return {"status": "ok"}
