"""Content types for stored artifacts, keyed by output file extension."""

CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
}

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def content_type_for(extension: str) -> str:
    """Get the content type for an extension, falling back to generic binary."""
    return CONTENT_TYPES.get(extension.lower().lstrip("."), DEFAULT_CONTENT_TYPE)
