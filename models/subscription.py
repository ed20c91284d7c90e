"""
Subscription, trial and entitlement models
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Billing provider status vocabulary, stored verbatim
STATUS_INCOMPLETE = "incomplete"
STATUS_INCOMPLETE_EXPIRED = "incomplete_expired"
STATUS_TRIALING = "trialing"
STATUS_ACTIVE = "active"
STATUS_PAST_DUE = "past_due"
STATUS_CANCELED = "canceled"
STATUS_UNPAID = "unpaid"
STATUS_PAUSED = "paused"

ENTITLED_STATUSES = frozenset({STATUS_ACTIVE, STATUS_TRIALING})

LOGIN_PATH = "/login"
PROFILE_PATH = "/profile"

MANUAL_RETRY_MESSAGE = "Loading subscription is taking longer than expected. Please refresh the page."


class SubscriptionRecord(BaseModel):
    """Local mirror of a user's subscription"""
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    status: str
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    created_at: datetime

    @property
    def is_entitled(self) -> bool:
        return self.status in ENTITLED_STATUSES


class RemoteSubscription(BaseModel):
    """Canonical subscription state as reported by the billing provider"""
    id: str
    status: str
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    customer_id: Optional[str] = None


class TrialStatus(BaseModel):
    is_in_trial: bool = False
    trial_end_time: Optional[datetime] = None
    is_trial_used: bool = False


class EntitlementReason(str, Enum):
    ACTIVE_SUBSCRIPTION = "active-subscription"
    TRIALING = "trialing"
    NO_SUBSCRIPTION = "no-subscription"
    TRIAL_EXHAUSTED = "trial-exhausted"
    SYNC_PENDING = "sync-pending"
    SYNC_FAILED = "sync-failed"
    UNAUTHENTICATED = "unauthenticated"


PENDING_REASONS = frozenset({EntitlementReason.SYNC_PENDING, EntitlementReason.SYNC_FAILED})


class EntitlementDecision(BaseModel):
    is_entitled: bool
    reason: EntitlementReason
    redirect_to: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.reason in PENDING_REASONS


class SubscriptionMutationRequest(BaseModel):
    """Body of the cancel/reactivate endpoints"""
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")
