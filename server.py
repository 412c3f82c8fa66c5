import json
import logging
from functools import lru_cache
from typing import Any, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from viberr.backend import Backend
from viberr.errors import ViberrError

logger = logging.getLogger("viberr_backend")

app = FastAPI(title="Viberr backend")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_backend() -> Backend:
    return Backend.from_settings()


# -----------------------
# Request bodies
# -----------------------
# Every field is optional: the controller decides what is missing and answers 400.

class AssistantChatRequest(BaseModel):
    slug: Optional[str] = None
    message: Optional[str] = None
    projectName: Optional[str] = None


class ChatMessageRequest(BaseModel):
    slug: Optional[str] = None
    message: Optional[str] = None


class BrandRequest(BaseModel):
    description: Optional[str] = None
    features: Optional[Any] = None


class DecomposeRequest(BaseModel):
    features: Optional[Any] = None


class SpecRequest(BaseModel):
    description: Optional[str] = None
    features: Optional[Any] = None
    brand: Optional[Any] = None
    total: Optional[Any] = None


class BuildRequest(BaseModel):
    spec: Optional[Any] = None
    brand: Optional[Any] = None
    features: Optional[Any] = None
    total: Optional[Any] = None


class ConversationRequest(BaseModel):
    message: Optional[str] = None
    history: Optional[Any] = None
    spec: Optional[Any] = None
    brand: Optional[Any] = None


class SubmissionRequest(BaseModel):
    slug: Optional[str] = None
    steps: Optional[Any] = None
    notes: Optional[str] = None


class NotifyRequest(BaseModel):
    slug: Optional[str] = None
    projectName: Optional[str] = None
    completedSteps: Optional[Any] = None
    notes: Optional[str] = None


# -----------------------
# Error surface
# -----------------------

@app.exception_handler(ViberrError)
async def viberr_error_handler(request: Request, exc: ViberrError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    loc = errors[0].get("loc", ()) if errors else ()
    field = ".".join(str(p) for p in loc if p not in ("body", "query", "form") and not isinstance(p, int))
    message = f"Missing or invalid {field}" if field else "Invalid request body"
    logger.debug("%s %s rejected: %s", request.method, request.url.path, errors)
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def _preview(label: str, data) -> None:
    try:
        preview = json.dumps(data, indent=2)
    except (TypeError, ValueError):
        preview = str(data)
    logger.debug(f"{label} {preview}")


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# -----------------------
# AI routes
# -----------------------

@app.post("/api/ai")
def assistant_chat(body: AssistantChatRequest, backend: Backend = Depends(get_backend)):
    _preview("assistant chat request", body.model_dump())
    return backend.handle_assistant_chat(body.model_dump())


@app.post("/api/brand")
def brand(body: BrandRequest, backend: Backend = Depends(get_backend)):
    return backend.handle_brand(body.model_dump())


@app.post("/api/decompose")
def decompose(body: DecomposeRequest, backend: Backend = Depends(get_backend)):
    return backend.handle_decompose(body.model_dump())


@app.post("/api/spec")
def spec(body: SpecRequest, backend: Backend = Depends(get_backend)):
    return backend.handle_spec(body.model_dump())


@app.post("/api/build")
def build(body: BuildRequest, backend: Backend = Depends(get_backend)):
    return backend.handle_build(body.model_dump())


@app.post("/api/revise")
def revise(body: ConversationRequest, backend: Backend = Depends(get_backend)):
    return backend.handle_revise(body.model_dump())


@app.post("/api/intake")
def intake(body: ConversationRequest, backend: Backend = Depends(get_backend)):
    return backend.handle_intake(body.model_dump())


# -----------------------
# Plain chat log
# -----------------------

@app.post("/api/chat")
def post_chat_message(body: ChatMessageRequest, backend: Backend = Depends(get_backend)):
    return backend.handle_chat_message(body.model_dump())


@app.get("/api/chat")
def get_chat_messages(slug: Optional[str] = None, backend: Backend = Depends(get_backend)):
    return backend.list_chat_messages(slug)


# -----------------------
# Submissions, uploads, notifications
# -----------------------

@app.post("/api/submissions")
def post_submission(body: SubmissionRequest, request: Request, backend: Backend = Depends(get_backend)):
    return backend.handle_submission(
        body.model_dump(),
        ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


@app.get("/api/submissions")
def get_submissions(backend: Backend = Depends(get_backend)):
    return backend.list_submissions()


@app.post("/api/upload")
async def upload(
    file: Optional[UploadFile] = File(None),
    slug: Optional[str] = Form(None),
    stepLabel: Optional[str] = Form(None),
    backend: Backend = Depends(get_backend),
):
    data = await file.read() if file is not None else None
    return backend.handle_upload(
        slug=slug,
        step_label=stepLabel,
        file_name=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
        data=data,
    )


@app.get("/api/upload")
def get_uploads(slug: Optional[str] = None, backend: Backend = Depends(get_backend)):
    return backend.list_uploads(slug)


@app.post("/api/notify")
def notify(body: NotifyRequest, backend: Backend = Depends(get_backend)):
    return backend.handle_notify(body.model_dump())


@app.get("/api/health")
def health(backend: Backend = Depends(get_backend)):
    return backend.health()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
