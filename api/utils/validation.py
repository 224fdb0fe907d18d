"""
Input validation for request fields.
"""

from typing import List, Optional
from dataclasses import dataclass
import re


MAX_CONVERSATION_ID_LENGTH = 128

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp")


@dataclass
class ValidationResult:
    """Result of validation check."""

    valid: bool
    errors: List[str]

    def __bool__(self) -> bool:
        """Allow using as boolean."""
        return self.valid


def validate_url(url: str) -> bool:
    """
    Basic URL validation.

    Args:
        url: URL string to validate

    Returns:
        True if URL is valid
    """
    if not isinstance(url, str):
        return False

    # Basic URL pattern
    url_pattern = re.compile(
        r"^https?://"  # http:// or https://
        r"(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,63}\.?|"  # domain
        r"localhost|"  # localhost
        r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})"  # IP
        r"(?::\d+)?"  # optional port
        r"(?:/?|[/?]\S+)$",
        re.IGNORECASE,
    )

    return bool(url_pattern.match(url))


def validate_conversation_id(conversation_id: str) -> ValidationResult:
    """
    Validate a client-supplied conversation identifier.

    Args:
        conversation_id: Identifier sent by the client

    Returns:
        ValidationResult with errors if invalid
    """
    errors = []

    if not isinstance(conversation_id, str):
        errors.append("conversationId must be a string")
    elif not conversation_id:
        errors.append("conversationId cannot be empty")
    elif len(conversation_id) > MAX_CONVERSATION_ID_LENGTH:
        errors.append(
            f"conversationId must be at most {MAX_CONVERSATION_ID_LENGTH} characters"
        )
    elif not re.match(r"^[a-zA-Z0-9_-]+$", conversation_id):
        errors.append(
            "conversationId must contain only alphanumeric, underscore, or hyphen"
        )

    return ValidationResult(valid=len(errors) == 0, errors=errors)


def validate_image_reference(image: str) -> ValidationResult:
    """
    Validate an image reference passed in a JSON body.

    Accepts http(s) URLs and base64 image data URLs.

    Args:
        image: URL or data URL

    Returns:
        ValidationResult with errors if invalid
    """
    errors = []

    if not isinstance(image, str):
        errors.append("image must be a string")
    elif image.startswith("data:"):
        if not re.match(r"^data:image/[a-zA-Z0-9.+-]+;base64,", image):
            errors.append("image data URL must be a base64-encoded image")
    elif not validate_url(image):
        errors.append("image must be an http(s) URL or a data URL")

    return ValidationResult(valid=len(errors) == 0, errors=errors)


def validate_image_upload(
    content_type: Optional[str], filename: Optional[str]
) -> ValidationResult:
    """
    Validate that an uploaded file looks like an image.

    Args:
        content_type: MIME type reported by the client
        filename: Original filename

    Returns:
        ValidationResult with errors if invalid
    """
    errors = []

    mime = (content_type or "").split(";")[0].strip().lower()
    name = (filename or "").lower()

    if mime.startswith("image/"):
        pass
    elif mime in ("", "application/octet-stream") and name.endswith(IMAGE_EXTENSIONS):
        pass
    else:
        errors.append(f"Uploaded file must be an image, got: {mime or 'unknown type'}")

    return ValidationResult(valid=len(errors) == 0, errors=errors)
