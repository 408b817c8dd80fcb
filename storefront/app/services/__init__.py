"""Validation services for the storefront."""

from storefront.app.services.csrf import (
    CSRFTokenManager,
    csrf_manager,
    generate_csrf_token,
    require_csrf,
    validate_csrf_token,
)
from storefront.app.services.file_validation import (
    FileValidationResult,
    ImageDimensions,
    get_extension_from_mime_type,
    validate_image_bytes,
    validate_image_file,
)
from storefront.app.services.json_ld import (
    build_contact_page_structured_data,
    validate_and_escape_json_ld,
)
from storefront.app.services.sanitize import ContactForm

__all__ = [
    "CSRFTokenManager",
    "csrf_manager",
    "generate_csrf_token",
    "require_csrf",
    "validate_csrf_token",
    "FileValidationResult",
    "ImageDimensions",
    "get_extension_from_mime_type",
    "validate_image_bytes",
    "validate_image_file",
    "build_contact_page_structured_data",
    "validate_and_escape_json_ld",
    "ContactForm",
]
