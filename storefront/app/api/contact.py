"""Contact form endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from storefront.app.core.logging import get_log_context, get_logger
from storefront.app.core.security import get_client_ip
from storefront.app.exceptions import InputValidationError
from storefront.app.middleware.rate_limit import RateLimit
from storefront.app.services.csrf import require_csrf
from storefront.app.services.json_ld import (
    build_contact_page_structured_data,
    validate_and_escape_json_ld,
)
from storefront.app.services.sanitize import ContactForm, get_safe_base_url

logger = get_logger(__name__)

router = APIRouter(prefix="/api/contact", tags=["contact"])

CONTACT_MAX_REQUESTS = 5
CONTACT_WINDOW_MS = 15 * 60 * 1000

contact_rate_limit = RateLimit("contact-form", CONTACT_MAX_REQUESTS, CONTACT_WINDOW_MS)


@router.get("/structured-data")
async def contact_structured_data() -> dict:
    """Return the contact page JSON-LD, or null when it fails validation."""
    data = build_contact_page_structured_data(get_safe_base_url())
    json_ld: Optional[str] = validate_and_escape_json_ld(data)
    if json_ld is None:
        logger.error("Failed to generate valid JSON-LD structured data")
    return {"json_ld": json_ld}


def _field_errors(exc: ValidationError) -> dict:
    errors = {}
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else "form"
        message = error["msg"]
        # pydantic prefixes messages raised from validators
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(field, message)
    return errors


@router.post("", dependencies=[Depends(contact_rate_limit), Depends(require_csrf)])
async def submit_contact_form(request: Request) -> dict:
    """Validate and sanitize a contact form submission.

    Delivery of the message is handled outside this service.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise InputValidationError("Please correct the errors below")
    else:
        form = await request.form()
        payload = {key: form.get(key) for key in ("name", "email", "body")}

    try:
        submission = ContactForm.model_validate(
            {key: payload.get(key) or "" for key in ("name", "email", "body")}
        )
    except ValidationError as e:
        raise InputValidationError(
            "Please correct the errors below", field_errors=_field_errors(e)
        )

    logger.info(
        "Contact form accepted",
        extra=get_log_context(
            request_id=getattr(request.state, "request_id", None),
            client_ip=get_client_ip(request),
            route_class="contact-form",
        ),
    )
    return {"success": True, "submission": submission.model_dump()}
