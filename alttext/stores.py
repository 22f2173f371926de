"""Collaborator contracts for asset and configuration storage."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Protocol

from alttext.config_manager import AltTextSettings, get_settings
from alttext.errors import AssetNotFound
from alttext.models import (
    GenerationConfig,
    GenerationMetadata,
    ImageAsset,
    MediaStats,
    QualityAssessment,
)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class AssetStore(Protocol):
    def get_asset(self, asset_id: str) -> ImageAsset:
        ...

    def set_alt_text(self, asset_id: str, text: str) -> None:
        ...

    def set_generation_metadata(self, asset_id: str, metadata: GenerationMetadata) -> None:
        ...

    def get_generation_metadata(self, asset_id: str) -> Optional[GenerationMetadata]:
        ...

    def set_assessment(self, asset_id: str, assessment: Optional[QualityAssessment]) -> None:
        ...

    def get_assessment(self, asset_id: str) -> Optional[QualityAssessment]:
        ...

    def list_missing_alt_ids(self, limit: int) -> List[str]:
        ...

    def list_all_image_ids(self, limit: int, offset: int = 0) -> List[str]:
        ...

    def count_images(self) -> int:
        ...

    def media_stats(self) -> MediaStats:
        ...


class ConfigStore(Protocol):
    def get_config(self) -> GenerationConfig:
        ...


def _aware(value: Optional[datetime]) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class InMemoryAssetStore:
    """Dictionary-backed asset store."""

    def __init__(self, assets: Iterable[ImageAsset] = ()) -> None:
        self._lock = threading.RLock()
        self._assets: Dict[str, ImageAsset] = {}
        self._metadata: Dict[str, GenerationMetadata] = {}
        self._assessments: Dict[str, QualityAssessment] = {}
        for asset in assets:
            self.add(asset)

    def add(self, asset: ImageAsset) -> None:
        with self._lock:
            self._assets[str(asset.asset_id)] = replace(asset, asset_id=str(asset.asset_id))

    def get_asset(self, asset_id: str) -> ImageAsset:
        with self._lock:
            asset = self._assets.get(str(asset_id))
            if asset is None:
                raise AssetNotFound(asset_id)
            return replace(asset)

    def set_alt_text(self, asset_id: str, text: str) -> None:
        with self._lock:
            asset = self._assets.get(str(asset_id))
            if asset is None:
                raise AssetNotFound(asset_id)
            asset.alt_text = text

    def set_generation_metadata(self, asset_id: str, metadata: GenerationMetadata) -> None:
        with self._lock:
            self._metadata[str(asset_id)] = metadata

    def get_generation_metadata(self, asset_id: str) -> Optional[GenerationMetadata]:
        with self._lock:
            return self._metadata.get(str(asset_id))

    def set_assessment(self, asset_id: str, assessment: Optional[QualityAssessment]) -> None:
        with self._lock:
            if assessment is None:
                self._assessments.pop(str(asset_id), None)
            else:
                self._assessments[str(asset_id)] = assessment

    def get_assessment(self, asset_id: str) -> Optional[QualityAssessment]:
        with self._lock:
            return self._assessments.get(str(asset_id))

    def _images(self) -> List[ImageAsset]:
        return [asset for asset in self._assets.values() if asset.is_image]

    def list_missing_alt_ids(self, limit: int) -> List[str]:
        with self._lock:
            missing = [asset for asset in self._images() if not asset.alt_text.strip()]
            missing.sort(key=lambda item: (_aware(item.uploaded_at), item.asset_id), reverse=True)
            return [asset.asset_id for asset in missing[: max(0, limit)]]

    def list_all_image_ids(self, limit: int, offset: int = 0) -> List[str]:
        """Images ordered most-recently-generated first, then by upload date."""

        with self._lock:
            def sort_key(asset: ImageAsset):
                metadata = self._metadata.get(asset.asset_id)
                generated = metadata.generated_at if metadata else None
                return (
                    generated is not None,
                    _aware(generated),
                    _aware(asset.uploaded_at),
                    asset.asset_id,
                )

            images = sorted(self._images(), key=sort_key, reverse=True)
            start = max(0, offset)
            return [asset.asset_id for asset in images[start : start + max(0, limit)]]

    def count_images(self) -> int:
        with self._lock:
            return len(self._images())

    def media_stats(self) -> MediaStats:
        with self._lock:
            images = self._images()
            with_alt = sum(1 for asset in images if asset.alt_text.strip())
            generated = sum(1 for asset in images if asset.asset_id in self._metadata)
            return MediaStats.compute(len(images), with_alt, generated)


class SettingsConfigStore:
    """Expose the active :class:`AltTextSettings` as generation snapshots."""

    def __init__(self, settings: Optional[AltTextSettings] = None) -> None:
        self._settings = settings

    @property
    def settings(self) -> AltTextSettings:
        return self._settings if self._settings is not None else get_settings()

    def get_config(self) -> GenerationConfig:
        return self.settings.to_generation_config()


class StaticConfigStore:
    def __init__(self, config: GenerationConfig) -> None:
        self.config = config

    def get_config(self) -> GenerationConfig:
        return self.config


__all__ = [
    "AssetStore",
    "ConfigStore",
    "InMemoryAssetStore",
    "SettingsConfigStore",
    "StaticConfigStore",
]
