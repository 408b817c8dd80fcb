"""Image upload validation.

Validates file content rather than the declared MIME type or extension,
which are attacker controlled: size, declared type, magic bytes, decoded
dimensions and aspect ratio are checked in that order, stopping at the
first failure.

Content failures (signature mismatch, undecodable dimensions) share one
generic message so clients cannot probe which check rejected a file. The
specific reason is logged server-side.
"""

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, NamedTuple, Optional, Union

from starlette.datastructures import UploadFile

from storefront.app.core.config import settings
from storefront.app.core.logging import get_logger

logger = get_logger(__name__)

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp")

MAX_ASPECT_RATIO = 100.0
MIN_ASPECT_RATIO = 0.01

# Signature checks need RIFF....WEBP, the longest fixed header
MIN_HEADER_BYTES = 12

CORRUPT_FILE_MESSAGE = "File content is invalid. File may be corrupted or malicious"


class ImageFormat(str, Enum):
    JPEG = "image/jpeg"
    PNG = "image/png"
    GIF = "image/gif"
    WEBP = "image/webp"


@dataclass(frozen=True)
class ImageDimensions:
    width: int
    height: int


@dataclass
class FileValidationResult:
    """Outcome of validating one upload. Not persisted."""
    valid: bool
    mime_type: Optional[str] = None
    dimensions: Optional[ImageDimensions] = None
    error: Optional[str] = None

    @classmethod
    def accept(cls, mime_type: str, dimensions: ImageDimensions) -> "FileValidationResult":
        return cls(valid=True, mime_type=mime_type, dimensions=dimensions)

    @classmethod
    def reject(cls, error: str) -> "FileValidationResult":
        return cls(valid=False, error=error)


# --- signatures -----------------------------------------------------------

JPEG_SIGNATURE = b"\xff\xd8\xff"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
GIF_SIGNATURES = (b"GIF87a", b"GIF89a")


def _is_jpeg(data: bytes) -> bool:
    return data.startswith(JPEG_SIGNATURE)


def _is_png(data: bytes) -> bool:
    return data.startswith(PNG_SIGNATURE)


def _is_gif(data: bytes) -> bool:
    return data.startswith(GIF_SIGNATURES)


def _is_webp(data: bytes) -> bool:
    # RIFF container at 0 and WEBP form type at 8; RIFF alone is also WAV/AVI
    return data[0:4] == b"RIFF" and data[8:12] == b"WEBP"


# --- dimension decoders ---------------------------------------------------

def _jpeg_dimensions(data: bytes) -> Optional[ImageDimensions]:
    """Walk JPEG segments from offset 2 until a Start-Of-Frame marker."""
    i = 2
    n = len(data)
    while i < n - 1:
        if data[i] == 0xFF and data[i + 1] not in (0xFF, 0x00):
            marker = data[i + 1]

            # SOF0-SOF3: FF Cx, length(2), precision(1), height(2), width(2)
            if 0xC0 <= marker <= 0xC3:
                if i + 9 > n:
                    return None
                height, width = struct.unpack_from(">HH", data, i + 5)
                return ImageDimensions(width, height)

            if i + 4 > n:
                return None
            (segment_length,) = struct.unpack_from(">H", data, i + 2)
            i += 2 + segment_length
        else:
            i += 1
    return None


def _png_dimensions(data: bytes) -> Optional[ImageDimensions]:
    # IHDR is always the first chunk: width and height at 16..23
    if len(data) < 24:
        return None
    width, height = struct.unpack_from(">II", data, 16)
    return ImageDimensions(width, height)


def _gif_dimensions(data: bytes) -> Optional[ImageDimensions]:
    # Logical screen descriptor follows the 6 byte signature
    if len(data) < 10:
        return None
    width, height = struct.unpack_from("<HH", data, 6)
    return ImageDimensions(width, height)


def _webp_lossy(data: bytes) -> ImageDimensions:
    # VP8 frame header: 3 byte frame tag, 9D 01 2A start code, then 14 bit sizes
    width, height = struct.unpack_from("<HH", data, 26)
    return ImageDimensions(width & 0x3FFF, height & 0x3FFF)


def _webp_lossless(data: bytes) -> ImageDimensions:
    # VP8L: 0x2F signature at 20, then 14 bits width-1 and 14 bits height-1
    (bits,) = struct.unpack_from("<I", data, 21)
    return ImageDimensions((bits & 0x3FFF) + 1, ((bits >> 14) & 0x3FFF) + 1)


def _webp_extended(data: bytes) -> ImageDimensions:
    # VP8X: flags(1), reserved(3), then 24 bit canvas width-1 and height-1
    width = int.from_bytes(data[24:27], "little") + 1
    height = int.from_bytes(data[27:30], "little") + 1
    return ImageDimensions(width, height)


_WEBP_CHUNK_DECODERS: Dict[bytes, Callable[[bytes], ImageDimensions]] = {
    b"VP8 ": _webp_lossy,
    b"VP8L": _webp_lossless,
    b"VP8X": _webp_extended,
}


def _webp_dimensions(data: bytes) -> Optional[ImageDimensions]:
    if len(data) < 30:
        return None
    decoder = _WEBP_CHUNK_DECODERS.get(bytes(data[12:16]))
    if decoder is None:
        return None
    return decoder(data)


class _FormatHandler(NamedTuple):
    matches_signature: Callable[[bytes], bool]
    read_dimensions: Callable[[bytes], Optional[ImageDimensions]]
    extension: str


FORMAT_HANDLERS: Dict[ImageFormat, _FormatHandler] = {
    ImageFormat.JPEG: _FormatHandler(_is_jpeg, _jpeg_dimensions, "jpg"),
    ImageFormat.PNG: _FormatHandler(_is_png, _png_dimensions, "png"),
    ImageFormat.GIF: _FormatHandler(_is_gif, _gif_dimensions, "gif"),
    ImageFormat.WEBP: _FormatHandler(_is_webp, _webp_dimensions, "webp"),
}


def normalize_mime_type(mime_type: Optional[str]) -> Optional[ImageFormat]:
    """Map a declared MIME type onto a supported format ("jpg" becomes jpeg)."""
    if not mime_type or not isinstance(mime_type, str):
        return None
    mime_type = mime_type.split(";", 1)[0].strip().lower()
    if mime_type not in ALLOWED_IMAGE_TYPES:
        return None
    if mime_type == "image/jpg":
        return ImageFormat.JPEG
    return ImageFormat(mime_type)


def validate_file_signature(data: bytes, image_format: ImageFormat) -> bool:
    """Check the magic bytes of data against the declared format."""
    if not data or len(data) < MIN_HEADER_BYTES:
        return False
    return FORMAT_HANDLERS[image_format].matches_signature(bytes(data[:MIN_HEADER_BYTES]))


def get_image_dimensions(data: bytes, image_format: ImageFormat) -> Optional[ImageDimensions]:
    """Decode width and height for image_format, or None if unreadable."""
    try:
        return FORMAT_HANDLERS[image_format].read_dimensions(data)
    except (struct.error, IndexError, ValueError) as e:
        logger.warning(f"Error reading {image_format.value} dimensions: {e}")
        return None


def validate_image_bytes(
    data: Union[bytes, bytearray, memoryview],
    declared_mime_type: Optional[str],
) -> FileValidationResult:
    """Validate an image held in memory.

    Args:
        data: Complete file content
        declared_mime_type: MIME type sent by the client

    Returns:
        FileValidationResult with mime_type and dimensions when valid,
        otherwise with a client-safe error message
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        return FileValidationResult.reject("Invalid file object")
    data = bytes(data)

    max_size = settings.upload_max_file_size
    if len(data) == 0:
        return FileValidationResult.reject("File is empty")
    if len(data) > max_size:
        logger.warning(f"Upload rejected: {len(data)} bytes exceeds {max_size}")
        return FileValidationResult.reject(
            f"File size exceeds {max_size // (1024 * 1024)}MB limit"
        )

    image_format = normalize_mime_type(declared_mime_type)
    if image_format is None:
        logger.warning(f"Upload rejected: disallowed type {declared_mime_type!r}")
        return FileValidationResult.reject(
            "Invalid file type. Only JPEG, PNG, GIF, and WebP images are allowed"
        )

    if not validate_file_signature(data, image_format):
        logger.warning(
            f"Upload rejected: magic bytes do not match declared type {declared_mime_type!r}"
        )
        return FileValidationResult.reject(CORRUPT_FILE_MESSAGE)

    dimensions = get_image_dimensions(data, image_format)
    if dimensions is None:
        logger.warning(f"Upload rejected: unreadable {image_format.value} dimensions")
        return FileValidationResult.reject(CORRUPT_FILE_MESSAGE)

    min_dim = settings.upload_min_dimension
    max_dim = settings.upload_max_dimension
    if dimensions.width < min_dim or dimensions.height < min_dim:
        return FileValidationResult.reject("Image dimensions are too small")
    if dimensions.width > max_dim or dimensions.height > max_dim:
        logger.warning(
            f"Upload rejected: {dimensions.width}x{dimensions.height} exceeds {max_dim}px"
        )
        return FileValidationResult.reject(
            f"Image dimensions exceed {max_dim}x{max_dim}px limit"
        )

    # Extreme ratios point at malformed or polyglot files
    aspect_ratio = dimensions.width / dimensions.height
    if aspect_ratio > MAX_ASPECT_RATIO or aspect_ratio < MIN_ASPECT_RATIO:
        logger.warning(
            f"Upload rejected: suspicious aspect ratio {dimensions.width}x{dimensions.height}"
        )
        return FileValidationResult.reject("Image has suspicious dimensions")

    return FileValidationResult.accept(image_format.value, dimensions)


async def validate_image_file(upload: UploadFile) -> FileValidationResult:
    """Validate an uploaded image file.

    Reads at most one byte past the size limit from the upload. The
    multipart parser has already spooled the whole part by then, so callers
    that need to bound memory or disk should check Content-Length before
    parsing the form. The read itself has no timeout; RequestTimeoutMiddleware
    bounds it.
    """
    if upload is None or not isinstance(upload, UploadFile):
        return FileValidationResult.reject("Invalid file object")

    max_size = settings.upload_max_file_size
    if upload.size is not None and upload.size > max_size:
        return FileValidationResult.reject(
            f"File size exceeds {max_size // (1024 * 1024)}MB limit"
        )

    try:
        await upload.seek(0)
        data = await upload.read(max_size + 1)
    except Exception as e:
        logger.warning(f"Failed to read upload {upload.filename!r}: {e}")
        return FileValidationResult.reject("Failed to read file")

    return validate_image_bytes(data, upload.content_type)


def get_extension_from_mime_type(mime_type: Optional[str]) -> str:
    """Get a safe file extension (without dot) for a MIME type, defaulting to jpg."""
    image_format = normalize_mime_type(mime_type)
    if image_format is None:
        return "jpg"
    return FORMAT_HANDLERS[image_format].extension
