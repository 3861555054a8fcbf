from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.config import CORS_ORIGINS, logger
from src.core.errors import TryOnError, ValidationError

from .routers import router
from .routers.tryon.services import build_error_response

# Initialize FastAPI application
app = FastAPI(
    title="Virtual Try-On Combine API",
    description="Combine a person photo and a garment photo with Gemini",
    version="1.0.0",
)

app.include_router(router)


@app.exception_handler(TryOnError)
async def tryon_error_handler(request: Request, exc: TryOnError) -> JSONResponse:
    return build_error_response(exc)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Malformed forms (e.g. a text field where a file is expected) get the same
    # {"error": ...} body as every other client error
    fields = [
        str(error["loc"][-1])
        for error in exc.errors()
        if error.get("loc")
    ]
    message = (
        f"Invalid value for: {', '.join(sorted(set(fields)))}"
        if fields
        else "Invalid request"
    )
    return build_error_response(ValidationError(message))


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


logger.info("Virtual Try-On Combine API initialized successfully")
