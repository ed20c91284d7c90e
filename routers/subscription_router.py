"""
Subscription Router - fetch, cancel/reactivate, trial and access endpoints
"""

import asyncio
import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, get_optional_user
from database import get_db
from models.subscription import EntitlementDecision, EntitlementReason, SubscriptionMutationRequest
from services.access_control import subscription_actions
from services.errors import OwnershipError, StoreError, SyncError, ValidationError
from services.stripe_gateway import StripeBillingGateway
from services.subscription_context import SubscriptionContext
from utils.responses import success_response, error_response

logger = logging.getLogger(__name__)

subscription_router = APIRouter(prefix="/api/subscription", tags=["subscription"])

TRY_AGAIN_MESSAGE = "Unable to load subscription details. Please try again."


def get_billing_gateway() -> StripeBillingGateway:
    return StripeBillingGateway()


def get_refresh_sleep():
    """Sleeper used between auto-refresh attempts"""
    return asyncio.sleep


async def get_subscription_context(
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_billing_gateway),
    sleep=Depends(get_refresh_sleep),
) -> AsyncGenerator[SubscriptionContext, None]:
    """Yield a request-scoped SubscriptionContext, disposed when the request ends."""
    async with SubscriptionContext(db, gateway, sleep=sleep) as ctx:
        yield ctx


def decision_payload(decision: EntitlementDecision) -> dict:
    payload = decision.model_dump(mode="json")
    payload["is_pending"] = decision.is_pending
    return payload


def _subscription_payload(record) -> dict:
    return {"subscription": record, "actions": subscription_actions(record)}


@subscription_router.get("")
async def fetch_subscription(
    payment: Optional[str] = Query(default=None),
    current_user: dict = Depends(get_current_user),
    ctx: SubscriptionContext = Depends(get_subscription_context),
):
    """
    Reconcile the caller's subscription with Stripe and return it together with
    the actions the profile page should offer.
    """
    await ctx.init(current_user)
    try:
        record = await ctx.fetch_subscription()
    except (SyncError, StoreError) as e:
        logger.error(f"Error syncing subscription for user {current_user['user_id']}: {e}")
        return error_response("SYNC_FAILED", status=503, message=TRY_AGAIN_MESSAGE)

    payload = _subscription_payload(record)
    payload["payment_success"] = payment == "success"
    return success_response(payload)


async def _mutate(ctx: SubscriptionContext, action: str, subscription_id: Optional[str]):
    mutate = ctx.cancel_subscription if action == "cancel" else ctx.reactivate_subscription
    try:
        record = await mutate(subscription_id)
    except ValidationError as e:
        return error_response("INVALID_REQUEST", status=400, message=str(e))
    except OwnershipError as e:
        return error_response("FORBIDDEN", status=403, message=str(e))
    except (SyncError, StoreError) as e:
        logger.error(f"Error trying to {action} subscription {subscription_id}: {e}")
        return error_response(
            "SYNC_FAILED",
            status=503,
            message=f"Failed to {action} subscription. Please try again.",
        )
    return success_response(_subscription_payload(record))


@subscription_router.post("/cancel")
async def cancel_subscription(
    request: SubscriptionMutationRequest,
    current_user: dict = Depends(get_current_user),
    ctx: SubscriptionContext = Depends(get_subscription_context),
):
    """Request cancellation at period end; the returned record comes from a follow-up sync."""
    await ctx.init(current_user)
    return await _mutate(ctx, "cancel", request.subscription_id)


@subscription_router.post("/reactivate")
async def reactivate_subscription(
    request: SubscriptionMutationRequest,
    current_user: dict = Depends(get_current_user),
    ctx: SubscriptionContext = Depends(get_subscription_context),
):
    """Withdraw a pending cancellation."""
    await ctx.init(current_user)
    return await _mutate(ctx, "reactivate", request.subscription_id)


@subscription_router.get("/trial")
async def evaluate_trial(
    current_user: dict = Depends(get_current_user),
    ctx: SubscriptionContext = Depends(get_subscription_context),
):
    await ctx.init(current_user)
    return success_response(await ctx.evaluate_trial())


@subscription_router.get("/access")
async def can_access(
    current_user: Optional[dict] = Depends(get_optional_user),
    ctx: SubscriptionContext = Depends(get_subscription_context),
):
    """
    Entitlement decision for the caller. Anonymous callers get a login redirect;
    a pending sync is retried a bounded number of times before giving up.
    """
    await ctx.init(current_user)
    decision = await ctx.wait_for_access()
    return success_response(decision_payload(decision))


async def require_entitlement(
    current_user: Optional[dict] = Depends(get_optional_user),
    ctx: SubscriptionContext = Depends(get_subscription_context),
    db: AsyncSession = Depends(get_db),
) -> EntitlementDecision:
    """
    Dependency for gated routes. Raises 401 for anonymous callers, 503 while the
    subscription could not be confirmed, and 402 when the caller is not entitled.
    """
    await ctx.init(current_user)
    decision = await ctx.wait_for_access()
    if decision.is_entitled:
        return decision

    # Keep sync and trial writes made while deciding; raising rolls the session back
    await db.commit()

    if decision.reason == EntitlementReason.UNAUTHENTICATED:
        status_code, code = 401, "UNAUTHENTICATED"
    elif decision.is_pending:
        status_code, code = 503, "SUBSCRIPTION_PENDING"
    else:
        status_code, code = 402, "SUBSCRIPTION_REQUIRED"

    raise HTTPException(
        status_code=status_code,
        detail={"code": code, **decision_payload(decision)},
    )
