"""Provider parsing strategies, one per provider family."""

import logging
from typing import Dict, Optional, Type

import httpx

from quizbank.errors import UnsupportedProviderError
from quizbank.models import BusinessKind, ProviderConfig, ProviderFamily
from quizbank.providers.base import DEFAULT_TIMEOUT, ParseStrategy
from quizbank.providers.gemini import GeminiParseStrategy
from quizbank.providers.openai import OpenAIParseStrategy
from quizbank.providers.qwen import QwenParseStrategy

logger = logging.getLogger(__name__)

STRATEGIES: Dict[ProviderFamily, Type[ParseStrategy]] = {
    ProviderFamily.OPENAI: OpenAIParseStrategy,
    ProviderFamily.GEMINI: GeminiParseStrategy,
    ProviderFamily.QWEN: QwenParseStrategy,
}


def get_parse_strategy(
    provider: ProviderConfig,
    model_name: str,
    business_kind: BusinessKind = BusinessKind.QUESTION_BANK,
    settings=None,
    timeout: float = DEFAULT_TIMEOUT,
    client: Optional[httpx.Client] = None,
) -> ParseStrategy:
    """Factory: get the parsing strategy for a provider's family.

    Raises:
        UnsupportedProviderError: For inactive providers and families without
            automatic parsing (``custom``)
    """
    if not provider.is_active:
        raise UnsupportedProviderError(f"Provider {provider.name} is inactive")

    family = ProviderFamily(provider.family)
    if family not in STRATEGIES:
        raise UnsupportedProviderError(
            f"Provider family {family.value} does not support automatic parsing. "
            f"Options: {[f.value for f in STRATEGIES]}"
        )

    logger.debug(f"Selected {family.value} strategy for provider {provider.name}")
    return STRATEGIES[family](
        provider,
        model_name,
        business_kind=business_kind,
        settings=settings,
        timeout=timeout,
        client=client,
    )


__all__ = [
    "GeminiParseStrategy",
    "OpenAIParseStrategy",
    "ParseStrategy",
    "QwenParseStrategy",
    "STRATEGIES",
    "get_parse_strategy",
]
