"""Health probes.

``/health/ready`` gates traffic on the database only: every approval
operation needs it, while the role directory is consulted per submission
and reports its own failures as 503s on that request.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from opsflow import __version__
from opsflow.api.deps import get_db, get_directory
from opsflow.services.directory import HttpRoleDirectory, RoleDirectory, StaticRoleDirectory

router = APIRouter(tags=["health"])

REQUIRED_TABLES = ("workflow_templates", "approval_chains", "delegation_rules")


def check_database(db: Session) -> Dict[str, Any]:
    """Connectivity plus presence of the engine's core tables."""
    try:
        db.execute(text("SELECT 1"))
        existing = set(inspect(db.get_bind()).get_table_names())
    except SQLAlchemyError as e:
        return {"status": "unhealthy", "error": str(e)}

    missing = [name for name in REQUIRED_TABLES if name not in existing]
    if missing:
        return {"status": "unhealthy", "error": f"missing tables: {', '.join(missing)}"}
    return {"status": "healthy", "dialect": db.get_bind().dialect.name}


def describe_directory(directory: RoleDirectory) -> Dict[str, Any]:
    if isinstance(directory, HttpRoleDirectory):
        return {"kind": "http", "base_url": directory.base_url}
    if isinstance(directory, StaticRoleDirectory):
        return {"kind": "static", "roles": len(directory.assignments)}
    return {"kind": type(directory).__name__}


def _now() -> str:
    return datetime.utcnow().isoformat()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "version": __version__, "timestamp": _now()}


@router.get("/health/live")
async def liveness_probe():
    return {"status": "alive", "timestamp": _now()}


@router.get("/health/ready")
def readiness_probe(
    db: Session = Depends(get_db),
    directory: RoleDirectory = Depends(get_directory),
):
    database = check_database(db)
    body = {
        "status": "ready" if database["status"] == "healthy" else "not_ready",
        "checks": {"database": database},
        "directory": describe_directory(directory),
        "timestamp": _now(),
    }
    if database["status"] != "healthy":
        return JSONResponse(status_code=503, content=body)
    return body
