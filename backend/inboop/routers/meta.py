"""
Meta platform callbacks.
"""
import logging

from fastapi import APIRouter, Depends, Form
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from inboop.config import Settings, get_settings
from inboop.database import get_db
from inboop.models import Business
from inboop.schemas.integration import BlockedReason
from inboop.services.signing import parse_signed_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/meta", tags=["meta"])


@router.post("/deauthorize")
def meta_deauthorize_callback(
    signed_request: str = Form(...),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Handle Meta deauthorization callback.

    Meta calls this endpoint when a user removes the app from their Facebook settings.
    Every Business connected through that Facebook user loses its credential and is
    marked inactive; the next status check reports NOT_CONNECTED.

    Configure this URL in Meta Developer Console:
    Settings > Basic > Deauthorize Callback URL
    """
    payload = parse_signed_request(signed_request, settings.meta_app_secret)
    if payload is None:
        # Meta expects a 200 response even when we reject the request
        return JSONResponse(status_code=200, content={"success": False, "error": "Invalid signed_request"})

    facebook_user_id = str(payload["user_id"])
    businesses = db.query(Business).filter(Business.facebook_user_id == facebook_user_id).all()
    for business in businesses:
        business.access_token = None
        business.token_expires_at = None
        business.is_active = False
        business.last_connection_error = BlockedReason.TOKEN_EXPIRED.value
    db.commit()

    logger.info(
        f"[OAuth] Meta deauthorization completed for facebook_user_id={facebook_user_id}, "
        f"deactivated {len(businesses)} business(es)"
    )
    return JSONResponse(status_code=200, content={"success": True, "deauthorized": len(businesses)})
