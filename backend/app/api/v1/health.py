r"""backend\app\api\v1\health.py

Health check endpoints.

These endpoints can be used by orchestrators and load balancers to verify
that the service is running.  A simple GET request to `/api/v1/health`
returns a JSON payload with status information; ``catalog`` reports whether
the product catalog file is present without loading it.
"""

from fastapi import APIRouter

from ...core.config import get_settings
from ...services.catalog_service import CatalogService

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Return a basic health indicator."""
    catalog = CatalogService(get_settings().data_dir)
    return {"status": "ok", "catalog": "present" if catalog.data_files_present() else "missing"}
