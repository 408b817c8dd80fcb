"""Image upload endpoint.

Files are validated here and handed to storage elsewhere; nothing is
persisted by this service.
"""

from fastapi import APIRouter, Depends, Request
from starlette.datastructures import UploadFile

from storefront.app.core.config import settings
from storefront.app.core.logging import get_log_context, get_logger
from storefront.app.core.security import get_client_ip
from storefront.app.exceptions import UploadRejectedError
from storefront.app.middleware.rate_limit import RateLimit
from storefront.app.services.csrf import require_csrf
from storefront.app.services.file_validation import (
    get_extension_from_mime_type,
    validate_image_file,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/uploads", tags=["uploads"])

UPLOAD_MAX_REQUESTS = 20
UPLOAD_WINDOW_MS = 60 * 1000

upload_rate_limit = RateLimit("image-upload", UPLOAD_MAX_REQUESTS, UPLOAD_WINDOW_MS)

# Room for multipart boundaries, part headers and the csrf_token field
MULTIPART_OVERHEAD_BYTES = 64 * 1024


async def reject_oversized_body(request: Request) -> None:
    """Reject uploads whose declared Content-Length cannot fit the size limit.

    Runs before anything parses the multipart body. Chunked requests carry
    no Content-Length; their file is size-checked after parsing.
    """
    declared = request.headers.get("content-length")
    if declared is None or not declared.isdigit():
        return

    max_size = settings.upload_max_file_size
    if int(declared) > max_size + MULTIPART_OVERHEAD_BYTES:
        logger.info(
            f"Image upload rejected before parsing: Content-Length {declared}",
            extra=get_log_context(
                request_id=getattr(request.state, "request_id", None),
                client_ip=get_client_ip(request),
                route_class="image-upload",
            ),
        )
        raise UploadRejectedError(f"File size exceeds {max_size // (1024 * 1024)}MB limit")


@router.post(
    "/images",
    dependencies=[
        Depends(upload_rate_limit),
        Depends(reject_oversized_body),
        Depends(require_csrf),
    ],
)
async def upload_image(request: Request) -> dict:
    """Validate a multipart image upload sent in the ``file`` field."""
    form = await request.form()
    upload = form.get("file")
    if not isinstance(upload, UploadFile):
        raise UploadRejectedError("No file provided")

    result = await validate_image_file(upload)
    if not result.valid:
        logger.info(
            f"Image upload rejected: {result.error}",
            extra=get_log_context(
                request_id=getattr(request.state, "request_id", None),
                client_ip=get_client_ip(request),
                route_class="image-upload",
            ),
        )
        raise UploadRejectedError(result.error)

    return {
        "mime_type": result.mime_type,
        "extension": get_extension_from_mime_type(result.mime_type),
        "width": result.dimensions.width,
        "height": result.dimensions.height,
    }
