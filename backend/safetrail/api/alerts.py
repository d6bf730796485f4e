"""Panic trigger"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel

from safetrail.api.deps import get_dispatcher, get_manager
from safetrail.models import EmergencyContact, Fix
from safetrail.services.alerts import AlertDispatcher
from safetrail.services.errors import NoContactsConfigured
from safetrail.services.sessions import SessionManager

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


class PanicRequest(BaseModel):
    message: str | None = None


class PanicResponse(BaseModel):
    ok: bool
    recipients: int
    location_included: bool


async def dispatch_alert(
    dispatcher: AlertDispatcher,
    contacts: list[EmergencyContact],
    fix: Fix | None,
    message: str | None,
):
    try:
        await dispatcher.trigger(contacts, fix, message)
    except NoContactsConfigured:
        log.warning("[Alerts] Contacts were disabled before the alert went out")


@router.post("/panic", response_model=PanicResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_panic(
    background_tasks: BackgroundTasks,
    body: PanicRequest | None = None,
    manager: SessionManager = Depends(get_manager),
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
):
    """Alert every enabled emergency contact with the last known location."""
    contacts = manager.store.list_contacts(enabled_only=True)
    if not contacts:
        log.warning("[Alerts] Panic triggered with no emergency contacts configured")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No emergency contacts configured"
        )

    fix = manager.last_fix
    message = body.message if body else None
    background_tasks.add_task(dispatch_alert, dispatcher, contacts, fix, message)
    log.info(f"[Alerts] Panic triggered, alerting {len(contacts)} contacts")

    return PanicResponse(ok=True, recipients=len(contacts), location_included=fix is not None)
