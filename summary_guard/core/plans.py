"""
Quota policies and plan resolution.

A policy is one of two variants: identified actors are metered per
calendar day against their plan, anonymous actors per calendar month
against a single smaller budget.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict

from .actors import Actor, ActorKind
from .errors import StoreUnavailable
from summary_guard.config.loader import Settings
from summary_guard.storage.repository import ProfileRepository

logger = logging.getLogger(__name__)

ANONYMOUS_PLAN = "anonymous"


class QuotaWindow(Enum):
    """Granularity of the period a ceiling applies to."""
    DAILY = "daily"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class QuotaPolicy:
    """Per-operation ceilings for one actor at one point in time."""
    kind: ActorKind
    plan: str
    limits: Dict[str, int]

    @property
    def window(self) -> QuotaWindow:
        if self.kind is ActorKind.ANONYMOUS:
            return QuotaWindow.MONTHLY
        return QuotaWindow.DAILY

    def ceiling_for(self, operation: str) -> int:
        """Unknown operations get a ceiling of 0, which always denies."""
        return self.limits.get(operation, 0)


class PlanResolver:
    """Maps an actor to its current QuotaPolicy.

    Resolved on every call so that plan changes take effect immediately.
    """

    def __init__(self, settings: Settings, profiles: ProfileRepository):
        self.settings = settings
        self.profiles = profiles

    def default_policy(self) -> QuotaPolicy:
        plan = self.settings.get_plan(None)
        return QuotaPolicy(ActorKind.IDENTIFIED, plan.name, dict(plan.limits))

    def anonymous_policy(self) -> QuotaPolicy:
        return QuotaPolicy(ActorKind.ANONYMOUS, ANONYMOUS_PLAN, dict(self.settings.anonymous_limits))

    def policy_for(self, actor: Actor) -> QuotaPolicy:
        if actor.is_anonymous:
            return self.anonymous_policy()

        try:
            profile = self.profiles.get(actor.identity)
        except StoreUnavailable:
            logger.debug("Profile lookup failed for %s; using default plan", actor.key, exc_info=True)
            return self.default_policy()

        if profile is None:
            logger.debug("No profile for %s; using default plan", actor.key)
            return self.default_policy()

        plan = self.settings.get_plan(profile.plan)
        limits = dict(plan.limits)
        for operation, override in profile.limits.items():
            if override is not None:
                limits[operation] = int(override)
        # The plan name reported is the stored one even if it is not configured.
        return QuotaPolicy(ActorKind.IDENTIFIED, profile.plan or plan.name, limits)
