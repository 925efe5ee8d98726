from fastapi import APIRouter
from typing import Dict, Any
import psutil
import os
from datetime import datetime, timezone

from gallerypro import __version__
from gallerypro.api.db.database import get_db

router = APIRouter()

@router.get("/")
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "Gallery Pro API",
        "version": __version__
    }

@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Kubernetes liveness probe endpoint"""
    return {"status": "alive"}

@router.get("/ready")
async def readiness_check() -> Dict[str, Any]:
    """Kubernetes readiness probe endpoint"""
    checks = {
        "database": False,
        "filesystem": False,
    }

    # Check database
    try:
        db = await get_db()
        async with db.execute("SELECT 1") as cursor:
            await cursor.fetchone()
        checks["database"] = True
    except Exception:
        pass

    # Check filesystem
    data_path = os.getenv("DB_PATH", "/data/db/gallerypro.db")
    checks["filesystem"] = os.path.exists(os.path.dirname(data_path))

    return {
        "ready": all(checks.values()),
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

@router.get("/system/info")
async def get_system_info() -> Dict[str, Any]:
    """Get system information"""
    import platform

    memory = psutil.virtual_memory()
    return {
        "platform": platform.system(),
        "python_version": platform.python_version(),
        "cpu_count": psutil.cpu_count(),
        "memory_total": memory.total,
        "memory_available": memory.available,
        "memory_percent": memory.percent,
        "gallerypro_version": __version__
    }
