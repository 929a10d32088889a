# src/clearbridge/providers/registry.py
"""Provider registry: provider code -> profile, built once at startup."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING

import structlog

from clearbridge.providers.base import ProviderProfile
from clearbridge.providers.cmts import CMTS_CODE, CmtsProfile
from clearbridge.providers.earthmed import EARTHMED_CODE, EarthMedProfile
from clearbridge.providers.extract import ResponseFieldExtractor

if TYPE_CHECKING:
    from clearbridge.core.config import ProviderSettings
    from clearbridge.store.clearances import ClearanceStore

logger = structlog.get_logger(__name__)


class ProviderRegistry(Mapping[str, ProviderProfile]):
    """Immutable, case-insensitive mapping of provider codes to profiles."""

    def __init__(self, profiles: Mapping[str, ProviderProfile]) -> None:
        self._profiles = {code.upper(): profile for code, profile in profiles.items()}

    def __getitem__(self, code: str) -> ProviderProfile:
        return self._profiles[code.upper()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._profiles)

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code.upper() in self._profiles

    def find(self, code: str) -> ProviderProfile | None:
        return self._profiles.get(code.upper())


def build_registry(store: ClearanceStore, providers: Mapping[str, ProviderSettings] | None = None) -> ProviderRegistry:
    """Built-in CMTS and EARTHMED profiles plus any providers declared in settings.

    Settings for a built-in code only contribute extra id paths; its wire
    format and cycle shape stay fixed.
    """
    providers = providers or {}

    def extractor_for(code: str) -> ResponseFieldExtractor:
        settings = providers.get(code)
        if settings is None:
            return ResponseFieldExtractor()
        return ResponseFieldExtractor(
            request_id_paths=settings.request_id_paths,
            response_id_paths=settings.response_id_paths,
        )

    profiles: dict[str, ProviderProfile] = {
        CMTS_CODE: CmtsProfile(store, extractor_for(CMTS_CODE)),
        EARTHMED_CODE: EarthMedProfile(store, extractor_for(EARTHMED_CODE)),
    }
    for code, settings in providers.items():
        if code in profiles:
            if "protocol" in settings.model_fields_set and settings.protocol != profiles[code].protocol:
                logger.warning(
                    "Protocol override ignored for built-in provider",
                    provider=code,
                    configured=settings.protocol.value,
                    fixed=profiles[code].protocol.value,
                )
            continue
        profiles[code] = ProviderProfile(code, settings.protocol, store, extractor_for(code))

    logger.debug("Provider registry built", providers=sorted(profiles))
    return ProviderRegistry(profiles)
