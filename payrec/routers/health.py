# payrec/routers/health.py

from fastapi import APIRouter

from payrec.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": "payrec-api",
    }


@router.get("/ready")
async def readiness_check():
    """Readiness check: reports whether each backing service is configured."""
    settings = get_settings()

    if settings.storage_backend == "memory":
        database = "memory"
    else:
        database = "ok" if settings.supabase_url and settings.supabase_service_role_key else "missing"

    checks = {
        "database": database,
        "stripe_webhooks": "ok" if settings.stripe_webhook_secret else "disabled",
        "issuer": "ok" if settings.issuer_url else "stub",
    }
    return {
        "status": "ready" if database != "missing" else "not_ready",
        "checks": checks,
    }
