"""Share grant endpoints."""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Response, status

from ..deps import request_now, session_factory
from ..domain.models import Grant, ListedGrant
from ..domain.policy import Action
from ..domain.schemas import GrantCreateIn, GrantLevelIn
from ..infra.db import SessionFactory
from ..services.abac import check_access
from ..services.grants import GrantStore

router = APIRouter()


@router.post("/", response_model=Grant, status_code=status.HTTP_201_CREATED)
async def create_grant(
    payload: GrantCreateIn,
    caller_id: str,
    factory: SessionFactory = Depends(session_factory),
    now: datetime = Depends(request_now),
):
    """Share a patient with another user, replacing any current grant for that pair."""
    store = GrantStore(factory)
    if payload.grantee_email:
        return await store.create_or_replace_grant_by_email(
            payload.patient_id,
            caller_id,
            payload.grantee_email,
            payload.access_level,
            payload.expires_at,
            now=now,
        )
    return await store.create_or_replace_grant(
        payload.patient_id,
        caller_id,
        payload.grantee_user_id,
        payload.access_level,
        payload.expires_at,
        now=now,
    )


@router.get("/received", response_model=List[ListedGrant])
async def received_grants(
    caller_id: str,
    factory: SessionFactory = Depends(session_factory),
    now: datetime = Depends(request_now),
):
    return await GrantStore(factory).list_grants_received_by(caller_id, now=now)


@router.get("/patients/{patient_id}", response_model=List[ListedGrant])
async def patient_grants(
    patient_id: str,
    caller_id: str,
    factory: SessionFactory = Depends(session_factory),
    now: datetime = Depends(request_now),
):
    """Active grants on a patient; visible to the owner and admin-level holders."""
    await check_access(factory, caller_id, patient_id, Action.MANAGE_SHARES, now)
    return await GrantStore(factory).list_grants_for(patient_id, now=now)


@router.patch("/{grant_id}", response_model=Grant)
async def revise_grant(
    grant_id: str,
    payload: GrantLevelIn,
    caller_id: str,
    factory: SessionFactory = Depends(session_factory),
    now: datetime = Depends(request_now),
):
    return await GrantStore(factory).revise_level(grant_id, payload.access_level, caller_id, now=now)


@router.delete("/{grant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_grant(
    grant_id: str,
    caller_id: str,
    factory: SessionFactory = Depends(session_factory),
    now: datetime = Depends(request_now),
):
    await GrantStore(factory).revoke(grant_id, caller_id, now=now)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
