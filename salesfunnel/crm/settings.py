from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from salesfunnel import audit
from salesfunnel.core.config import get_settings
from salesfunnel.core.rbac import ROLE_ADMIN, ensure_role
from salesfunnel.crm.models import CRMSetting
from salesfunnel.crm.schemas import PoolSettingsRead, PoolSettingsUpdate
from salesfunnel.platform.security.context import Actor


logger = logging.getLogger("salesfunnel.crm.settings")

CLAIM_LIMIT_KEY = "customer_claim_limit"
INACTIVE_DAYS_KEY = "customer_inactive_days"


@dataclass(frozen=True, slots=True)
class PoolPolicy:
    claim_limit: int
    inactive_days: int


def _as_int(key: str, raw: str | None, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("crm.setting_invalid", extra={"operation": key, "error": raw})
        return default


def resolve_pool_policy(session: Session) -> PoolPolicy:
    """Stored overrides win over process configuration."""
    settings = get_settings()
    rows = dict(
        session.execute(
            select(CRMSetting.key, CRMSetting.value).where(CRMSetting.key.in_([CLAIM_LIMIT_KEY, INACTIVE_DAYS_KEY]))
        ).all()
    )
    return PoolPolicy(
        claim_limit=_as_int(CLAIM_LIMIT_KEY, rows.get(CLAIM_LIMIT_KEY), settings.customer_claim_limit),
        inactive_days=_as_int(INACTIVE_DAYS_KEY, rows.get(INACTIVE_DAYS_KEY), settings.customer_inactive_days),
    )


def get_pool_settings(session: Session) -> PoolSettingsRead:
    policy = resolve_pool_policy(session)
    return PoolSettingsRead(customer_claim_limit=policy.claim_limit, customer_inactive_days=policy.inactive_days)


def update_pool_settings(session: Session, actor: Actor, dto: PoolSettingsUpdate) -> PoolSettingsRead:
    ensure_role(actor.role, {ROLE_ADMIN}, "change pool settings")
    before = get_pool_settings(session).model_dump()

    changes = {
        CLAIM_LIMIT_KEY: dto.customer_claim_limit,
        INACTIVE_DAYS_KEY: dto.customer_inactive_days,
    }
    for key, value in changes.items():
        if value is None:
            continue
        session.merge(CRMSetting(key=key, value=str(value), updated_by=actor.user_id))
    session.commit()

    after = get_pool_settings(session)
    audit.record(
        actor_user_id=actor.user_id,
        entity_type="crm.setting",
        entity_id="customer_pool",
        action="update",
        before=before,
        after=after.model_dump(),
        correlation_id=actor.correlation_id,
    )
    return after
