"""
Telephony endpoints - phone numbers, SIP provisioning and outbound calls

Numbers are bought in the Exotel dashboard; an owner attaches one of the
account's numbers to an agent here. The config starts inactive until an
operator has routed the number to the LiveKit SIP domain.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_owned_agent, load_owned_agent
from app.db import AgentConfig, TelephonyConfig, get_db
from app.schemas import (
    OutboundCallRequest, OutboundCallResponse, OwnedNumber, OwnedNumbersResponse,
    SipConfig, TelephonyActivateResponse, TelephonyCreateRequest, TelephonyRecreateResponse,
    TelephonyStatusResponse, TelephonyUpdateRequest,
)
from app.services import exotel_client, sip_service, telephony_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Telephony"])


async def _require_config(db: AsyncSession, agent: AgentConfig) -> TelephonyConfig:
    config = await telephony_service.get_telephony_config(db, agent.id)
    if not config:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Telephony not configured")
    return config


def _exotel_or_503():
    try:
        return exotel_client.get_exotel_client()
    except exotel_client.ExotelNotConfigured as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@router.get("/telephony/owned-numbers", response_model=OwnedNumbersResponse)
async def list_owned_numbers(user_id: str = Depends(get_current_user_id)):
    """Numbers in the Exotel account that can be attached to an agent"""
    exotel = _exotel_or_503()
    try:
        numbers = await exotel.list_numbers()
    except exotel_client.VENDOR_ERRORS as e:
        logger.error(f"[TELEPHONY] Failed to list owned numbers: {e!r}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list owned numbers: {e}",
        )
    return OwnedNumbersResponse(numbers=[
        OwnedNumber(
            sid=n.sid,
            phone_number=n.phone_number,
            friendly_name=n.friendly_name,
            capabilities=n.capabilities,
            date_created=n.date_created,
        )
        for n in numbers
    ])


@router.get("/agents/{agent_id}/telephony", response_model=TelephonyStatusResponse)
async def get_telephony(
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    config = await _require_config(db, agent)
    return TelephonyStatusResponse(**telephony_service.status_payload(config))


@router.post(
    "/agents/{agent_id}/telephony",
    response_model=TelephonyStatusResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_telephony(
    request: TelephonyCreateRequest,
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    """
    Attach an owned number to the agent.

    Creates the inbound/outbound SIP trunks and the dispatch rule, then
    stores the config inactive. The number must then be routed by Exotel to
    the returned SIP URI before it is activated.
    """
    if await telephony_service.get_telephony_config(db, agent.id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Telephony already configured for this agent",
        )

    phone_number = (request.phone_number or "").strip()
    if not phone_number:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Phone number is required. Buy a number in the Exotel dashboard and enter it here.",
        )

    try:
        config, sip = await telephony_service.provision_telephony(db, agent, phone_number)
    except telephony_service.PhoneNumberNotOwned as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except exotel_client.ExotelNotConfigured as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except exotel_client.VENDOR_ERRORS + (sip_service.TelephonyProvisioningError,) as e:
        logger.error(f"[TELEPHONY] Provisioning failed for agent {agent.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to set up telephony: {e}",
        )

    payload = telephony_service.status_payload(config)
    payload["sip_config"] = SipConfig(sip_uri=sip.sip_uri, sip_domain=sip.sip_domain)
    payload["message"] = (
        "Phone number setup initiated. Configuration will be completed shortly. "
        "You will be notified once your number is ready to receive calls."
    )
    return TelephonyStatusResponse(**payload)


@router.put("/agents/{agent_id}/telephony", response_model=TelephonyStatusResponse)
async def update_telephony(
    request: TelephonyUpdateRequest,
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    config = await _require_config(db, agent)
    if request.is_active is not None:
        config = await telephony_service.set_active(db, config, request.is_active)
    return TelephonyStatusResponse(**telephony_service.status_payload(config))


@router.patch("/agents/{agent_id}/telephony/activate", response_model=TelephonyActivateResponse)
async def activate_telephony(
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    """Mark the number live once it routes to the SIP domain (idempotent)"""
    config = await _require_config(db, agent)
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


@router.delete("/agents/{agent_id}/telephony", status_code=status.HTTP_204_NO_CONTENT)
async def delete_telephony(
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    """Remove SIP resources (best-effort) then the config. The number is kept in the account."""
    config = await _require_config(db, agent)
    await telephony_service.delete_telephony(db, config)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/agents/{agent_id}/telephony/recreate", response_model=TelephonyRecreateResponse)
async def recreate_telephony(
    agent: AgentConfig = Depends(get_owned_agent),
    db: AsyncSession = Depends(get_db)
):
    """Rebuild trunks and dispatch rule, e.g. after changing SIP IPs or the worker name"""
    config = await _require_config(db, agent)
    try:
        result = await telephony_service.recreate_telephony(db, config)
    except sip_service.TelephonyProvisioningError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to recreate telephony setup: {e}",
        )
    return TelephonyRecreateResponse(
        message="Telephony setup recreated",
        dispatch_rule_id=result.dispatch_rule_id,
        sip_uri=result.sip_uri,
        sip_domain=result.sip_domain,
    )


@router.post("/call", response_model=OutboundCallResponse)
async def place_outbound_call(
    request: OutboundCallRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """Have the agent call a phone number"""
    agent = await load_owned_agent(db, request.agent_config_id, user_id)
    try:
        call = await telephony_service.place_outbound_call(db, agent, request.to_phone_number)
    except telephony_service.TelephonyNotActive as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error(f"[TELEPHONY] Outbound call failed for agent {agent.id}: {e!r}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to place call: {e}",
        )
    return OutboundCallResponse(room_name=call.room_name, call_sid=call.call_sid, status="calling")
