"""Image payload helpers."""

from .payload import (
    ImageByteReader,
    ImagePayloadResolver,
    ImageTooLarge,
    encode_data_url,
    is_image_access_error,
    is_public_url,
)

__all__ = [
    "ImageByteReader",
    "ImagePayloadResolver",
    "ImageTooLarge",
    "encode_data_url",
    "is_image_access_error",
    "is_public_url",
]
