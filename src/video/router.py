"""Category-tier provider routing with ordered fallback across video backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from src.core.logger import get_logger
from src.core.metrics import record_provider_fallback, record_video_generation
from src.video.providers.base import ProviderError, ProviderResult, VideoGenerationRequest, VideoProvider


TIER_PREMIUM = "premium"
TIER_STANDARD = "standard"
TIER_ECONOMY = "economy"

CATEGORY_TIERS: Dict[str, str] = {
    "finance": TIER_PREMIUM,
    "tech": TIER_PREMIUM,
    "luxury": TIER_PREMIUM,
    "emotional": TIER_STANDARD,
    "music": TIER_STANDARD,
    "relationships": TIER_STANDARD,
    "fitness": TIER_STANDARD,
    "news": TIER_STANDARD,
    "gaming": TIER_ECONOMY,
    "absurd": TIER_ECONOMY,
    "cartoon": TIER_ECONOMY,
    "food": TIER_ECONOMY,
}

FALLBACK_CHAINS: Dict[str, Tuple[str, ...]] = {
    TIER_PREMIUM: ("sora", "veo", "runway", "luma"),
    TIER_STANDARD: ("veo", "runway", "luma", "sora"),
    TIER_ECONOMY: ("luma", "runway", "veo", "sora"),
}

# Budgeting table; selection never looks at cost.
TIER_COSTS: Dict[str, Tuple[str, float]] = {
    TIER_PREMIUM: ("sora", 0.30),
    TIER_STANDARD: ("veo", 0.033),
    TIER_ECONOMY: ("luma", 0.025),
}

TIER_PRIORITIES: Dict[str, int] = {
    TIER_PREMIUM: 10,
    TIER_STANDARD: 5,
    TIER_ECONOMY: 1,
}


@dataclass(frozen=True)
class CostEstimate:
    provider: str
    cost: float
    tier: str


def tier_for_category(category: str) -> str:
    return CATEGORY_TIERS.get((category or "").strip().lower(), TIER_STANDARD)


def priority_for_category(category: str) -> int:
    return TIER_PRIORITIES[tier_for_category(category)]


def estimate_category_cost(category: str, duration_seconds: float) -> CostEstimate:
    tier = tier_for_category(category)
    provider, cost_per_second = TIER_COSTS[tier]
    return CostEstimate(
        provider=provider,
        cost=round(max(float(duration_seconds), 0.0) * cost_per_second, 4),
        tier=tier,
    )


class ProviderRouter:
    def __init__(self, providers: Mapping[str, VideoProvider]) -> None:
        self._providers: Dict[str, VideoProvider] = {
            name.strip().lower(): provider for name, provider in providers.items()
        }
        self._logger = get_logger("viral.video.router")

    def available_providers(self) -> List[str]:
        return [name for name in self._providers if self.is_provider_available(name)]

    def get_provider(self, provider_name: Optional[str]) -> Optional[VideoProvider]:
        return self._providers.get((provider_name or "").strip().lower())

    def is_provider_available(self, provider_name: str) -> bool:
        provider = self._providers.get((provider_name or "").strip().lower())
        if provider is None:
            return False
        return bool(getattr(provider, "available", True))

    def fallback_chain(self, request: VideoGenerationRequest) -> List[str]:
        chain = list(FALLBACK_CHAINS[tier_for_category(request.category)])
        override = (request.provider or "").strip().lower()
        if override and override in self._providers:
            chain = [override] + [name for name in chain if name != override]
        return [name for name in chain if name in self._providers]

    def select_provider(self, request: VideoGenerationRequest) -> VideoProvider:
        chain = self.fallback_chain(request)
        if not chain:
            raise ProviderError("no_video_providers_registered")
        return self._providers[chain[0]]

    def generate_video(self, request: VideoGenerationRequest) -> ProviderResult:
        tier = tier_for_category(request.category)
        chain = self.fallback_chain(request)
        errors: List[str] = []

        for position, name in enumerate(chain, start=1):
            provider = self._providers[name]
            if position > 1 and request.heartbeat is not None:
                request.heartbeat()
            self._logger.info(
                "provider_router_attempt",
                provider=name,
                tier=tier,
                category=request.category,
                position=position,
                job_id=request.job_id or None,
            )
            try:
                result = provider.generate(request)
            except Exception as exc:
                result = ProviderResult.failure(name, str(exc) or exc.__class__.__name__)

            if result.success:
                record_video_generation(provider=name, status="succeeded", cost=result.cost)
                self._logger.info(
                    "provider_router_succeeded",
                    provider=name,
                    tier=tier,
                    position=position,
                    cost=result.cost,
                    job_id=request.job_id or None,
                )
                return result

            errors.append(f"{name}: {result.error}")
            record_video_generation(provider=name, status="failed")
            record_provider_fallback(failed_provider=name, tier=tier)
            self._logger.warning(
                "provider_router_fallback",
                provider=name,
                tier=tier,
                error=result.error,
                job_id=request.job_id or None,
            )

        message = "All video providers failed"
        if errors:
            message = f"{message}: {'; '.join(errors)}"
        self._logger.error("provider_router_exhausted", tier=tier, providers=chain, job_id=request.job_id or None)
        return ProviderResult.failure("none", message)

    def estimate_cost(self, category: str, duration_seconds: float) -> CostEstimate:
        return estimate_category_cost(category, duration_seconds)
