"""CSRF token endpoint."""

from fastapi import APIRouter, Request

from storefront.app.services.csrf import csrf_manager

router = APIRouter(prefix="/api", tags=["security"])


@router.get("/csrf-token")
async def issue_csrf_token(request: Request) -> dict:
    """Issue a fresh token for the next form submission.

    The token is stored in the session and replaces any earlier one.
    """
    return {"csrf_token": csrf_manager.issue(request.session)}
