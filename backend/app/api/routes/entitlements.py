from __future__ import annotations

from fastapi import APIRouter

from app import crud
from app.api.deps import CurrentUser, SessionDep
from app.api.errors import AppError
from app.api.schemas import ApiEnvelope, EntitlementPublic, EntitlementsData
from app.models import Entitlement

router = APIRouter(prefix="/entitlements", tags=["entitlements"])


def _public(entitlement: Entitlement) -> EntitlementPublic:
    view = EntitlementPublic.model_validate(entitlement)
    view.is_active = crud.grants_access(entitlement)
    return view


@router.get("", response_model=ApiEnvelope)
def list_my_entitlements(session: SessionDep, current_user: CurrentUser) -> ApiEnvelope:
    items = [_public(e) for e in crud.list_entitlements(session=session, user_id=current_user.id)]
    return ApiEnvelope(
        data=EntitlementsData(is_premium=current_user.is_premium, data=items, count=len(items))
    )


@router.get("/{entitlement_id}", response_model=ApiEnvelope)
def get_my_entitlement(
    entitlement_id: str, session: SessionDep, current_user: CurrentUser
) -> ApiEnvelope:
    entitlement = crud.get_entitlement(
        session=session, user_id=current_user.id, entitlement_id=entitlement_id
    )
    if entitlement is None:
        raise AppError(code=404001, message="Entitlement not found", status_code=404)
    return ApiEnvelope(data=_public(entitlement))
