"""Provider profiles, response field extraction, and the response interpreter."""

from clearbridge.providers.base import InterpretationContext, ProviderProfile, StatusResultItem
from clearbridge.providers.cmts import CMTS_CODE, CmtsProfile
from clearbridge.providers.earthmed import EARTHMED_CODE, EarthMedProfile, decode_reference, encode_reference
from clearbridge.providers.extract import ResponseFieldExtractor, ResponseFields
from clearbridge.providers.interpreter import ResponseInterpreter
from clearbridge.providers.registry import ProviderRegistry, build_registry

__all__ = [
    "CMTS_CODE",
    "EARTHMED_CODE",
    "CmtsProfile",
    "EarthMedProfile",
    "InterpretationContext",
    "ProviderProfile",
    "ProviderRegistry",
    "ResponseFieldExtractor",
    "ResponseFields",
    "ResponseInterpreter",
    "StatusResultItem",
    "build_registry",
    "decode_reference",
    "encode_reference",
]
