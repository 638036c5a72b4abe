import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from opsflow import __version__
from opsflow.api.routers import approvals, delegations, health, templates
from opsflow.api.schemas.common import ENGINE_ERROR_RESPONSES
from opsflow.core import errors
from opsflow.core.config import get_settings
from src.common.logger import configure_logging

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings, file_logging=settings.log_to_file)

# Errors not listed here map to 400
ERROR_STATUS = {
    errors.ChainNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.TemplateNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.DelegationNotFoundError: status.HTTP_404_NOT_FOUND,
    errors.UnauthorizedDecisionError: status.HTTP_403_FORBIDDEN,
    errors.AlreadyDecidedError: status.HTTP_409_CONFLICT,
    errors.OutOfOrderDecisionError: status.HTTP_409_CONFLICT,
    errors.TerminalInstanceError: status.HTTP_409_CONFLICT,
    errors.ConcurrentDecisionError: status.HTTP_409_CONFLICT,
    errors.DefaultTemplateError: status.HTTP_409_CONFLICT,
    errors.DelegationConflictError: status.HTTP_409_CONFLICT,
    errors.AmbiguousTemplateError: status.HTTP_409_CONFLICT,
    errors.AmbiguousDelegationError: status.HTTP_409_CONFLICT,
    errors.NoTemplateError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.InvalidRequestError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.InvalidTemplateError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.InvalidDelegationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.DependencyError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: errors.ApprovalEngineError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


app = FastAPI(
    title=settings.app_name,
    description="Approval chain resolution engine",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(errors.ApprovalEngineError)
async def engine_error_handler(request: Request, exc: errors.ApprovalEngineError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


app.include_router(health.router)
app.include_router(approvals.router, prefix="/api", responses=ENGINE_ERROR_RESPONSES)
app.include_router(templates.router, prefix="/api", responses=ENGINE_ERROR_RESPONSES)
app.include_router(delegations.router, prefix="/api", responses=ENGINE_ERROR_RESPONSES)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
    }
