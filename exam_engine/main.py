# exam_engine/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from exam_engine.api.v1.endpoints import admin, auth, health, student, users
from exam_engine.core.config import settings
from exam_engine.core.errors import ExamEngineError
from exam_engine.db.session import init_db

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.PROJECT_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ExamEngineError)
async def exam_engine_error_handler(request: Request, exc: ExamEngineError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def on_startup():
    await init_db()


app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")
app.include_router(student.router, prefix="/api/v1")
app.include_router(admin.router, prefix="/api/v1")
