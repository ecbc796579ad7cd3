# @TEST tests/test_household_context.py

"""Resolve a caller to exactly one active household membership.

A membership is active when it was accepted and has not been revoked,
and the user account itself is active. Search code never receives a bare
household id from the client; it receives a :class:`HouseholdContext`
produced here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.constants import MemberRole
from app.models import HouseholdMember, User

logger = logging.getLogger(__name__)


class AuthenticationRequiredError(Exception):
    """No caller identity at all."""


class AccessDeniedError(Exception):
    """Authenticated, but without an active membership for the household."""


@dataclass(frozen=True)
class HouseholdContext:
    user_id: int
    household_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in (MemberRole.OWNER, MemberRole.ADMIN)


async def resolve_household_context(
    db: AsyncSession,
    user_id: int | None,
    household_id: int | None = None,
) -> HouseholdContext:
    """Look up the caller's active membership.

    Args:
        db: Async database session.
        user_id: Authenticated user id, or None when unauthenticated.
        household_id: Household the caller claims (e.g. from the token). When
            omitted, the user's default household is preferred, then the
            oldest active membership.

    Raises:
        AuthenticationRequiredError: If *user_id* is None.
        AccessDeniedError: If no active membership matches.
    """
    if user_id is None:
        raise AuthenticationRequiredError("Authentication required")

    stmt = (
        select(HouseholdMember.household_id, HouseholdMember.role)
        .join(User, User.id == HouseholdMember.user_id)
        .where(
            HouseholdMember.user_id == user_id,
            HouseholdMember.accepted_at.isnot(None),
            HouseholdMember.revoked_at.is_(None),
            User.is_active.is_(True),
        )
    )
    if household_id is not None:
        stmt = stmt.where(HouseholdMember.household_id == household_id)

    stmt = stmt.order_by(
        case((HouseholdMember.household_id == User.default_household_id, 0), else_=1),
        HouseholdMember.created_at,
        HouseholdMember.id,
    ).limit(1)

    result = await db.execute(stmt)
    row = result.first()
    if row is None:
        logger.warning("Access denied: user %s has no active household membership", user_id)
        raise AccessDeniedError("No active household membership")

    return HouseholdContext(user_id=user_id, household_id=row.household_id, role=row.role)
