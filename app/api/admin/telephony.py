"""
Admin - Telephony operations

Operators list numbers waiting for Exotel routing and flip them live once
the vendor confirms. The Exotel inventory (search, purchase, rename) and
the LiveKit SIP trunks are managed from here as well. Used by
``voice-studio-telephony``.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.admin.deps import require_admin
from app.db import get_db
from app.schemas import (
    AvailableNumber, AvailableNumbersResponse, NumberPurchaseRequest, NumberUpdateRequest,
    OwnedNumber, PendingTelephonyConfig, PendingTelephonyResponse, SipTrunkListResponse,
    SipTrunkSummary, TelephonyActivateResponse,
)
from app.services import exotel_client, sip_service, telephony_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin/telephony",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)


def _exotel():
    try:
        return exotel_client.get_exotel_client()
    except exotel_client.ExotelNotConfigured as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


def _vendor_failure(action: str, e: Exception) -> HTTPException:
    logger.error(f"[ADMIN] {action} failed: {e!r}")
    if getattr(e, "status_code", None) == status.HTTP_404_NOT_FOUND:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to {action}: {e}")


def _owned_number(number: exotel_client.Exophone) -> OwnedNumber:
    return OwnedNumber(
        sid=number.sid,
        phone_number=number.phone_number,
        friendly_name=number.friendly_name,
        capabilities=number.capabilities,
        date_created=number.date_created,
    )


@router.get("/pending", response_model=PendingTelephonyResponse)
async def list_pending_telephony(db: AsyncSession = Depends(get_db)):
    rows = await telephony_service.list_pending(db)
    configs = [
        PendingTelephonyConfig(
            id=config.id,
            agent_config_id=config.agent_config_id,
            agent_name=agent.name,
            user_id=agent.user_id,
            phone_number=config.phone_number,
            exophone_sid=config.exophone_sid,
            sip_domain=config.sip_domain,
            dispatch_rule_id=config.dispatch_rule_id,
            created_at=config.created_at,
        )
        for config, agent in rows
    ]
    return PendingTelephonyResponse(total=len(configs), configs=configs)


@router.get("/trunks", response_model=SipTrunkListResponse)
async def list_sip_trunks():
    """All LiveKit SIP trunks, for spotting leftovers of deleted agents"""
    try:
        trunks = await sip_service.list_trunks()
    except Exception as e:
        raise _vendor_failure("list SIP trunks", e)
    return SipTrunkListResponse(
        inbound=[SipTrunkSummary(**t) for t in trunks["inbound"]],
        outbound=[SipTrunkSummary(**t) for t in trunks["outbound"]],
    )


@router.get("/available-numbers", response_model=AvailableNumbersResponse)
async def search_available_numbers(region: str = Query("MH", min_length=2, max_length=4)):
    exotel = _exotel()
    try:
        numbers = await exotel.search_available_numbers(region)
    except exotel_client.VENDOR_ERRORS as e:
        raise _vendor_failure("search available numbers", e)
    return AvailableNumbersResponse(
        region=region,
        numbers=[
            AvailableNumber(
                phone_number=n.phone_number,
                friendly_name=n.friendly_name,
                country=n.country,
                region=n.region,
            )
            for n in numbers
        ],
    )


@router.post("/numbers", response_model=OwnedNumber, status_code=status.HTTP_201_CREATED)
async def buy_number(request: NumberPurchaseRequest):
    exotel = _exotel()
    try:
        number = await exotel.buy_number(request.phone_number.strip(), request.friendly_name)
    except exotel_client.VENDOR_ERRORS as e:
        raise _vendor_failure("purchase number", e)
    return _owned_number(number)


@router.get("/numbers/{exophone_sid}", response_model=OwnedNumber)
async def get_number(exophone_sid: str):
    exotel = _exotel()
    try:
        number = await exotel.get_number(exophone_sid)
    except exotel_client.VENDOR_ERRORS as e:
        raise _vendor_failure("get number", e)
    return _owned_number(number)


@router.put("/numbers/{exophone_sid}", response_model=OwnedNumber)
async def update_number(exophone_sid: str, request: NumberUpdateRequest):
    exotel = _exotel()
    try:
        number = await exotel.update_number(exophone_sid, request.friendly_name)
    except exotel_client.VENDOR_ERRORS as e:
        raise _vendor_failure("update number", e)
    return _owned_number(number)


@router.post("/{agent_id}/activate", response_model=TelephonyActivateResponse)
async def activate_telephony(agent_id: str, db: AsyncSession = Depends(get_db)):
    config = await telephony_service.get_telephony_config(db, agent_id)
    if not config:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Telephony not configured")
    if config.is_active:
        return TelephonyActivateResponse(
            message="Telephony is already active",
            phone_number=config.phone_number,
            is_active=True,
        )
    config = await telephony_service.set_active(db, config, True)
    return TelephonyActivateResponse(
        message="Telephony activated successfully",
        status="active",
        phone_number=config.phone_number,
        is_active=True,
    )
