"""FastAPI application exposing identity enrollment and recognition.

Routes:
    GET    /identities            list enrolled names
    POST   /identities            enroll a face under a name
    PATCH  /identities/{name}     rename an identity
    DELETE /identities/{name}     delete an identity (idempotent)
    POST   /identities/recognize  identify a face
    GET    /health                readiness probe

The {name} segment may contain an encoded "/" (%2F).

Handlers are plain ``def`` functions, so FastAPI runs them in its threadpool
and requests overlap; the identity store and lazy model loader are safe for
that.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Type

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from faceid.errors import (
    DegenerateInputError,
    DuplicateNameError,
    FaceIdError,
    ImageDecodeError,
    InsufficientKeypointsError,
    InvalidKeypointsError,
    InvalidNameError,
    ModelInferenceError,
    ModelLoadError,
    NoFaceDetectedError,
    NotFoundError,
    StorageError,
)
from faceid.logging_config import get_logger
from faceid.services.identity import (
    IdentityService,
    as_keypoints,
    clean_name,
    create_identity_service,
)
from faceid.utils import decode_image

logger = get_logger(__name__)


# Most specific classes first; the first isinstance match wins
ERROR_STATUS: Dict[Type[FaceIdError], int] = {
    InsufficientKeypointsError: 400,
    InvalidKeypointsError: 400,
    InvalidNameError: 400,
    ImageDecodeError: 400,
    DegenerateInputError: 400,
    NotFoundError: 404,
    DuplicateNameError: 409,
    NoFaceDetectedError: 422,
    ModelInferenceError: 500,
    ModelLoadError: 503,
    StorageError: 503,
}


def status_for(error: FaceIdError) -> int:
    """HTTP status code for a pipeline error (500 if unmapped)."""
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


class Point(BaseModel):
    x: float = Field(allow_inf_nan=False)
    y: float = Field(allow_inf_nan=False)


class EnrollRequest(BaseModel):
    image: str
    keypoints: List[Point]
    name: str = ""


class RecognizeRequest(BaseModel):
    image: str
    keypoints: List[Point]


class RenameRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_name: str = Field(default="", alias="newName")


class OkResponse(BaseModel):
    ok: bool = True


class NamesResponse(BaseModel):
    names: List[str]


class RecognizeResponse(BaseModel):
    name: Optional[str]


def get_service(request: Request) -> IdentityService:
    return request.app.state.service


def create_app(service: Optional[IdentityService] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        service: Identity service to serve. If None, one is created from
                 the environment configuration.

    Returns:
        Application that opens the identity store at startup and closes it
        at shutdown.

    Example:
        >>> app = create_app(create_identity_service())
        >>> uvicorn.run(app, host="127.0.0.1", port=8000)
    """
    if service is None:
        service = create_identity_service()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service.store.open()
        logger.info(f"Serving {len(service.store)} identities")
        try:
            yield
        finally:
            service.store.close()

    app = FastAPI(title="Face Identity API", version="0.1.0", lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(FaceIdError)
    async def handle_faceid_error(request: Request, exc: FaceIdError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected ({status}): {exc}")
        return JSONResponse(status_code=status, content={"detail": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning(f"{request.method} {request.url.path} malformed body: {exc.errors()}")
        return JSONResponse(status_code=400, content={"detail": "Malformed request body"})

    @app.get("/health", tags=["system"])
    def health_check() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/identities", response_model=NamesResponse, tags=["identities"])
    def list_identities(svc: IdentityService = Depends(get_service)) -> NamesResponse:
        return NamesResponse(names=svc.list_names())

    @app.post("/identities", response_model=OkResponse, tags=["identities"])
    def enroll_identity(
        body: EnrollRequest, svc: IdentityService = Depends(get_service)
    ) -> OkResponse:
        # Cheap checks first so bad requests never touch the model
        name = clean_name(body.name)
        keypoints = as_keypoints([p.model_dump() for p in body.keypoints])
        image = decode_image(body.image)

        svc.enroll(image, keypoints, name)
        return OkResponse()

    @app.post("/identities/recognize", response_model=RecognizeResponse, tags=["identities"])
    def recognize_identity(
        body: RecognizeRequest, svc: IdentityService = Depends(get_service)
    ) -> RecognizeResponse:
        keypoints = as_keypoints([p.model_dump() for p in body.keypoints])
        image = decode_image(body.image)

        return RecognizeResponse(name=svc.recognize(image, keypoints))

    @app.patch("/identities/{name:path}", response_model=OkResponse, tags=["identities"])
    def rename_identity(
        name: str, body: RenameRequest, svc: IdentityService = Depends(get_service)
    ) -> OkResponse:
        svc.rename(name, body.new_name)
        return OkResponse()

    @app.delete("/identities/{name:path}", response_model=OkResponse, tags=["identities"])
    def delete_identity(name: str, svc: IdentityService = Depends(get_service)) -> OkResponse:
        svc.delete(name)
        return OkResponse()

    return app
