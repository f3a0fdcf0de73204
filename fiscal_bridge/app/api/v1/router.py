from fastapi import APIRouter

from fiscal_bridge.app.api.v1.endpoints.health import router as health_router
from fiscal_bridge.app.api.v1.endpoints.webhooks import router as webhooks_router
from fiscal_bridge.app.api.v1.endpoints.tax_ids import router as tax_ids_router
from fiscal_bridge.app.api.v1.endpoints.events import retry_router as events_retry_router
from fiscal_bridge.app.api.v1.endpoints.events import router as events_router
from fiscal_bridge.app.api.v1.endpoints.shops import router as shops_router
from fiscal_bridge.app.api.v1.endpoints.documents import router as documents_router
from fiscal_bridge.app.api.v1.endpoints.stock_sync import router as stock_sync_router
from fiscal_bridge.app.api.v1.endpoints.notifications import router as notifications_router
from fiscal_bridge.app.api.v1.endpoints.usage import router as usage_router

SHOP_PREFIX = "/shops/{shop_domain}"

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(webhooks_router, tags=["webhooks"])
router.include_router(tax_ids_router, tags=["tax_ids"])
router.include_router(events_retry_router, tags=["events"])
router.include_router(shops_router, tags=["shops"])
router.include_router(documents_router, prefix=SHOP_PREFIX, tags=["documents"])
router.include_router(events_router, prefix=SHOP_PREFIX, tags=["events"])
router.include_router(stock_sync_router, prefix=SHOP_PREFIX, tags=["stock_sync"])
router.include_router(notifications_router, prefix=SHOP_PREFIX, tags=["notifications"])
router.include_router(usage_router, prefix=SHOP_PREFIX, tags=["usage"])
