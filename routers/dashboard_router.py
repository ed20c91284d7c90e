from fastapi import APIRouter, Depends

from models.subscription import EntitlementDecision
from routers.subscription_router import decision_payload, require_entitlement
from utils.responses import success_response

dashboard_router = APIRouter(prefix="/api", tags=["dashboard"])


@dashboard_router.get("/dashboard")
async def dashboard(decision: EntitlementDecision = Depends(require_entitlement)):
    """Gated entry point for the dashboard. Only entitled callers get past the dependency."""
    return success_response({"plan": "Premium Plan", "access": decision_payload(decision)})
