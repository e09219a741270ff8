from fastapi import APIRouter, Depends
from typing import Dict, Any

from ..config import settings
from ..providers.custody import CustodyProvider, get_custody_provider

router = APIRouter()


@router.get("/healthz")
async def health_check(custody: CustodyProvider = Depends(get_custody_provider)) -> Dict[str, Any]:
    """Health check endpoint that verifies custody provider status"""

    provider_status = {
        "custody": await custody.health_check(),
    }

    healthy = provider_status["custody"]["status"] == "healthy"

    return {
        "status": "healthy" if healthy else "degraded",
        "providers": provider_status,
        "app_id_configured": settings.has_app_id,
    }
