"""Super-admin operations: role toggling, the maintenance switch and
subscription overrides."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from gatekeeper.api.deps import get_context, get_db, require_super_admin
from gatekeeper.context import AppContext
from gatekeeper.models.subscription import PlanTier
from gatekeeper.schemas.common import ListResponse
from gatekeeper.schemas.godmode import (
    MaintenanceRead,
    MaintenanceUpdate,
    SubscriptionOverride,
    SubscriptionRead,
    ToggleRoleRequest,
    ToggleRoleResponse,
)
from gatekeeper.services.auth_provider import AuthProviderRejected, Identity
from gatekeeper.services.billing.subscriptions import subscription_store
from gatekeeper.services.platform_settings import platform_settings
from gatekeeper.services.roles import Role, parse_role

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/godmode", tags=["godmode"])


def _role_items(raw: object) -> list[str]:
    if isinstance(raw, str):
        return [raw] if raw.strip() else []
    if isinstance(raw, list):
        return [str(item) for item in raw if isinstance(item, str) and item.strip()]
    return []


@router.post("/users/toggle-role", response_model=ToggleRoleResponse)
async def toggle_role(
    payload: ToggleRoleRequest,
    identity: Identity = Depends(require_super_admin),
    context: AppContext = Depends(get_context),
):
    if payload.user_id == identity.subject_id and payload.role is Role.super_admin:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "self_toggle_forbidden",
                "message": "You cannot toggle super_admin on yourself",
            },
        )
    client = context.auth_client
    if not client.is_configured_for_admin():
        raise HTTPException(
            status_code=503,
            detail={
                "code": "admin_unavailable",
                "message": "Auth provider admin key is not configured",
            },
        )
    target = await client.get_user_by_id(payload.user_id)
    if target is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "user_not_found", "message": "User not found"},
        )

    app_metadata = dict(target.get("app_metadata") or {})
    current = _role_items(app_metadata.get("roles"))
    kept = [item for item in current if parse_role(item) is not payload.role]
    granted = len(kept) == len(current)
    roles = [*kept, payload.role.value] if granted else kept
    app_metadata["roles"] = roles
    try:
        await client.update_app_metadata(payload.user_id, app_metadata)
    except AuthProviderRejected as exc:
        raise HTTPException(
            status_code=502,
            detail={"code": "role_update_failed", "message": str(exc)},
        )

    context.audit.record(
        "user.role_granted" if granted else "user.role_revoked",
        entity_type="user",
        entity_id=payload.user_id,
        actor_id=identity.subject_id,
        metadata={"role": payload.role.value, "roles": roles},
    )
    logger.info(
        "Super admin %s %s role %s for user %s",
        identity.subject_id,
        "granted" if granted else "revoked",
        payload.role.value,
        payload.user_id,
    )
    return ToggleRoleResponse(user_id=payload.user_id, roles=roles, granted=granted)


@router.get("/maintenance", response_model=MaintenanceRead)
def get_maintenance(
    _: Identity = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    return MaintenanceRead(enabled=platform_settings.is_maintenance_active(db))


@router.put("/maintenance", response_model=MaintenanceRead)
def set_maintenance(
    payload: MaintenanceUpdate,
    identity: Identity = Depends(require_super_admin),
    context: AppContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    platform_settings.set_maintenance(db, payload.enabled)
    context.audit.record(
        "platform.maintenance_set",
        entity_type="platform_setting",
        entity_id="maintenance_mode",
        actor_id=identity.subject_id,
        metadata={"enabled": payload.enabled},
    )
    return MaintenanceRead(enabled=payload.enabled)


def _subscription_read(business_id: str, subscription) -> SubscriptionRead:
    if subscription is None:
        return SubscriptionRead(
            business_id=business_id,
            plan=PlanTier.starter,
            status="inactive",
            exists=False,
        )
    return SubscriptionRead.model_validate(subscription)


@router.get("/subscriptions", response_model=ListResponse[SubscriptionRead])
def list_subscriptions(
    status: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _: Identity = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    items, total = subscription_store.list(db, status, limit, offset)
    return {
        "items": [SubscriptionRead.model_validate(item) for item in items],
        "count": len(items),
        "limit": limit,
        "offset": offset,
        "total": total,
    }


@router.get(
    "/businesses/{business_id}/subscription", response_model=SubscriptionRead
)
def get_business_subscription(
    business_id: str = Path(min_length=1, max_length=64),
    _: Identity = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    return _subscription_read(
        business_id, subscription_store.get_by_business(db, business_id)
    )


@router.put(
    "/businesses/{business_id}/subscription", response_model=SubscriptionRead
)
def set_business_subscription(
    payload: SubscriptionOverride,
    business_id: str = Path(min_length=1, max_length=64),
    identity: Identity = Depends(require_super_admin),
    context: AppContext = Depends(get_context),
    db: Session = Depends(get_db),
):
    previous = subscription_store.get_by_business(db, business_id)
    before = (
        {"plan": previous.plan.value, "status": previous.status} if previous else None
    )
    subscription = subscription_store.set_manual(
        db, business_id, plan=payload.plan, status=payload.status
    )
    context.audit.record(
        "subscription.overridden",
        entity_type="subscription",
        entity_id=business_id,
        actor_id=identity.subject_id,
        metadata={
            "plan": payload.plan.value,
            "status": payload.status,
            "previous": before,
        },
    )
    return _subscription_read(business_id, subscription)
