"""Resolve how an image is referenced in a generation request.

Strategies are produced lazily in priority order: the asset's public URL, the
inline base64 bytes, then no image at all. The orchestrator only asks for the
next strategy when the previous one was unusable or the API reported that it
could not access the image.
"""

from __future__ import annotations

import base64
import ipaddress
import urllib.error
import urllib.request
from pathlib import Path
from typing import Callable, Iterator, List, Optional
from urllib.parse import urlparse

import regex
import requests

from alttext import logging_manager
from alttext.errors import ImageUnavailable
from alttext.llm_client import USER_AGENT
from alttext.models import GenerationConfig, ImageAsset, ImageStrategy, StrategyKind

_LOGGER = logging_manager.get_logger().getChild("images.payload")

_IMAGE_ACCESS_PATTERN = regex.compile(
    r"download|\b40[34]\b|time(?:d)?\s*out|timeout|invalid[_ ]image|unsupported image"
    r"|could not (?:fetch|retrieve|access|process)",
    regex.IGNORECASE,
)
_PRIVATE_HOST_SUFFIXES = (".local", ".localhost", ".internal", ".lan")
_CHUNK_SIZE = 64 * 1024


def is_image_access_error(message: Optional[str]) -> bool:
    """Return True when an API error says the image reference could not be used."""

    return bool(message) and bool(_IMAGE_ACCESS_PATTERN.search(message or ""))


def is_public_url(url: Optional[str]) -> bool:
    """Return True for http(s) URLs the provider can plausibly reach."""

    if not url:
        return False
    parsed = urlparse(url.strip())
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        return False
    host = parsed.hostname.lower()
    if host == "localhost" or host.endswith(_PRIVATE_HOST_SUFFIXES):
        return False
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return "." in host
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_unspecified
    )


class ImageTooLarge(ImageUnavailable):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"Image is {size} bytes; inline limit is {limit} bytes.",
            data={"size": size, "limit": limit},
        )


class ImageByteReader:
    """Read image bytes through a layered fallback.

    Order: direct filesystem read, ``requests`` GET with a descriptive user
    agent, then ``urllib`` as a last resort.
    """

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
        urlopen: Callable[..., object] = urllib.request.urlopen,
    ) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout
        self._urlopen = urlopen

    def read(self, asset: ImageAsset, max_bytes: int) -> bytes:
        reasons: List[str] = []

        if asset.file_path:
            try:
                return self._read_file(Path(asset.file_path), max_bytes)
            except ImageTooLarge:
                raise
            except OSError as exc:
                reasons.append(f"filesystem: {exc}")

        if asset.url:
            for label, reader in (("http", self._read_http), ("urllib", self._read_urllib)):
                try:
                    return reader(asset.url, max_bytes)
                except ImageTooLarge:
                    raise
                except (requests.exceptions.RequestException, urllib.error.URLError, OSError, ValueError) as exc:
                    reasons.append(f"{label}: {exc}")

        if not reasons:
            reasons.append("no file path or URL available")
        raise ImageUnavailable(
            "Unable to read image bytes (" + "; ".join(reasons) + ")",
            data={"asset_id": asset.asset_id, "reasons": reasons},
        )

    def _read_file(self, path: Path, max_bytes: int) -> bytes:
        size = path.stat().st_size
        if max_bytes and size > max_bytes:
            raise ImageTooLarge(size, max_bytes)
        return path.read_bytes()

    def _read_http(self, url: str, max_bytes: int) -> bytes:
        response = self._session.get(
            url,
            headers={"User-Agent": USER_AGENT, "Accept": "image/*"},
            timeout=self._timeout,
            stream=True,
        )
        try:
            response.raise_for_status()
            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and max_bytes and int(declared) > max_bytes:
                raise ImageTooLarge(int(declared), max_bytes)
            buffer = bytearray()
            for chunk in response.iter_content(_CHUNK_SIZE):
                buffer.extend(chunk)
                if max_bytes and len(buffer) > max_bytes:
                    raise ImageTooLarge(len(buffer), max_bytes)
            return bytes(buffer)
        finally:
            response.close()

    def _read_urllib(self, url: str, max_bytes: int) -> bytes:
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        with self._urlopen(request, timeout=self._timeout) as handle:
            limit = max_bytes + 1 if max_bytes else -1
            data = handle.read(limit)
        if max_bytes and len(data) > max_bytes:
            raise ImageTooLarge(len(data), max_bytes)
        return data


def encode_data_url(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type or 'image/jpeg'};base64,{encoded}"


class ImagePayloadResolver:
    """Produce :class:`ImageStrategy` candidates for an asset, best first."""

    def __init__(self, reader: Optional[ImageByteReader] = None) -> None:
        self._reader = reader or ImageByteReader()

    def iter_strategies(
        self, asset: ImageAsset, config: GenerationConfig
    ) -> Iterator[ImageStrategy]:
        if config.include_image:
            if is_public_url(asset.url):
                yield ImageStrategy(StrategyKind.REMOTE_URL, payload=asset.url)
            else:
                yield ImageStrategy(
                    StrategyKind.REMOTE_URL,
                    error="Asset has no publicly reachable URL.",
                )
            yield self._inline(asset, config)
        yield ImageStrategy(StrategyKind.OMITTED)

    def _inline(self, asset: ImageAsset, config: GenerationConfig) -> ImageStrategy:
        try:
            data = self._reader.read(asset, config.max_inline_bytes)
        except ImageUnavailable as exc:
            _LOGGER.debug(
                "Inline image payload unavailable for %s: %s",
                asset.asset_id,
                exc.message,
                extra={"event": "images.inline_unavailable", "asset_id": asset.asset_id},
            )
            return ImageStrategy(StrategyKind.INLINE_BASE64, error=exc.message)
        return ImageStrategy(
            StrategyKind.INLINE_BASE64,
            payload=encode_data_url(data, asset.mime_type),
        )


__all__ = [
    "ImageByteReader",
    "ImagePayloadResolver",
    "ImageTooLarge",
    "encode_data_url",
    "is_image_access_error",
    "is_public_url",
]
