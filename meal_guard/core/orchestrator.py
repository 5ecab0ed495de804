"""
Recipe generation orchestration.

Owns the call sequence for one request:

1. Admission - cost, rate and circuit-breaker gates; a denial stops here
2. Family analysis - recomputed for every request
3. Cache lookup - a safe hit is served at zero cost
4. Request construction
5. Provider call - bounded timeout, every failure becomes a fallback result
6. Safety enhancement - always runs; the provider's own allergen notes are
   untrusted
7. Persistence and usage logging
8. Result with the family-impact summary

Persistence policy: a generated recipe is never discarded because storage
failed. The recipe is returned with ``storage_warning`` set instead.
"""

import asyncio
import logging
import sqlite3
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable, Optional

from meal_guard.config.loader import PipelineConfig
from meal_guard.sdk.openai_client import ProviderError, RecipeGenerationClient
from meal_guard.storage.models import UsageLedgerEntry
from meal_guard.storage.repository import MealGuardRepository

from .admission import AdmissionController
from .cache import RecipeCache
from .family import FamilyComplexityAnalysis, HouseholdPreferences, analyze_family
from .pricing import calculate_cost
from .prompt import GenerationRequest, SpecialOccasion, build_generation_prompt
from .recipe import GeneratedRecipe, InvalidRecipeError, build_recipe, validate_raw_recipe
from .safety import enhance_recipe_with_safety

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (sqlite3.Error, OSError)

ADMISSION_DENIED = "admission_denied"
PROVIDER_FAILURE = "provider_failure"

FALLBACK_MESSAGES = {
    "configuration": "There's an issue with our AI service configuration. Please contact support.",
    "network": "Network connection issue. Please check your internet and try again.",
    "quota": "Our AI service is temporarily busy. Please try again in a few minutes.",
}
GENERIC_FALLBACK_MESSAGE = (
    "We're having trouble generating recipes right now. Please try again in a few minutes."
)
STORAGE_WARNING_MESSAGE = (
    "Your recipe is ready, but we couldn't save it to your history. "
    "Save or screenshot it if you want to keep it."
)


@dataclass(frozen=True)
class GenerationResult:
    """Success or failure payload returned to the caller.

    ``error_kind`` separates admission denials from provider failures.
    ``storage_warning`` and ``safety_degraded`` can accompany a success.
    """
    success: bool
    recipe: Optional[GeneratedRecipe] = None
    family_summary: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    failure_category: Optional[str] = None
    user_message: Optional[str] = None
    cost_protected: bool = False
    fallback_used: bool = False
    storage_warning: bool = False
    safety_degraded: bool = False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecipeOrchestrator:
    """End-to-end pipeline for one recipe request at a time.

    Holds no per-request state, so one instance can serve concurrent
    requests. Shared state lives only in the repository.
    """

    def __init__(
        self,
        config: PipelineConfig,
        repository: Optional[MealGuardRepository] = None,
        provider: Optional[RecipeGenerationClient] = None,
        cache: Optional[RecipeCache] = None,
        admission: Optional[AdmissionController] = None
    ):
        self.config = config
        self.repository = repository or MealGuardRepository(
            config.db_path, timeout=config.storage_timeout_seconds
        )
        self.provider = provider or RecipeGenerationClient(
            model=config.model,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            timeout=config.provider_timeout_seconds
        )
        self.cache = cache or RecipeCache(self.repository, ttl_hours=config.cache_ttl_hours)
        self.admission = admission or AdmissionController(self.repository, config)

    def generate(self, request: GenerationRequest, now: Optional[datetime] = None) -> GenerationResult:
        """Run the pipeline for one request. Never raises for provider or storage failures."""
        now = now or _utcnow()

        decision = self.admission.admit(request.user_id, premium=request.premium, now=now)
        if not decision.allowed:
            logger.info("Request from %s denied by %s gate", request.user_id, decision.gate.value)
            return GenerationResult(
                success=False,
                error="Daily cost limit reached" if decision.cost_protected else "Rate limit exceeded",
                error_kind=ADMISSION_DENIED,
                user_message=decision.message,
                cost_protected=decision.cost_protected,
            )

        analysis = analyze_family(request.preferences)

        cached = self.cache.lookup(request, now=now)
        if cached is not None:
            return self._serve_cached(request, analysis, cached, now)

        prompt = build_generation_prompt(request, analysis)

        started = time.monotonic()
        try:
            response = self.provider.generate(prompt.messages())
            raw = validate_raw_recipe(response.content)
        except (ProviderError, InvalidRecipeError) as e:
            return self._handle_generation_failure(request, e)
        generation_time_ms = int((time.monotonic() - started) * 1000)

        try:
            cost = calculate_cost(response.model, response.usage)
        except ValueError:
            # The configured model is validated against the pricing table.
            logger.warning("No pricing for reported model %s; charging at %s rates",
                           response.model, self.config.model)
            cost = calculate_cost(self.config.model, response.usage)

        report = enhance_recipe_with_safety(raw, request.preferences, analysis)
        recipe = build_recipe(
            raw,
            detected_allergens=report.detected_allergens,
            safety_warnings=report.safety_warnings,
            safety_score=report.safety_score,
            generation_cost=cost,
            generation_time_ms=generation_time_ms,
            default_servings=request.preferences.household_size,
            member_names=[m.name for m in request.preferences.family_members],
        )
        if report.degraded:
            logger.info("Provider omitted safety fields %s for %r", report.missing_fields, recipe.title)

        stored = self._store_recipe(request, recipe, now)
        logged = self._log_usage(UsageLedgerEntry(
            timestamp=now,
            user_id=request.user_id,
            cost=cost,
            meal_type=request.meal_type,
            prompt_tokens=response.usage.prompt_tokens,
            completion_tokens=response.usage.completion_tokens,
            total_tokens=response.usage.total_tokens,
            generation_time_ms=generation_time_ms,
            complexity_score=analysis.complexity_score,
            cache_hit=False,
            safety_warnings_count=len(recipe.safety_warnings),
            allergens_detected_count=len(recipe.detected_allergens),
            request_id=response.request_id,
        ))
        if self.cache.is_safe_for(recipe, request.preferences):
            self.cache.store(request, recipe, now=now)

        logger.info("Generated %r for %s (cost %.6f, safety %d)",
                    recipe.title, request.user_id, cost, recipe.safety_score)
        return GenerationResult(
            success=True,
            recipe=recipe,
            family_summary=analysis.summary,
            user_message=None if stored and logged else STORAGE_WARNING_MESSAGE,
            storage_warning=not (stored and logged),
            safety_degraded=report.degraded,
        )

    def _serve_cached(
        self,
        request: GenerationRequest,
        analysis: FamilyComplexityAnalysis,
        cached: GeneratedRecipe,
        now: datetime
    ) -> GenerationResult:
        # Safety is rescored for the household as it is now.
        report = enhance_recipe_with_safety(cached.to_dict(), request.preferences, analysis,
                                            ingredients=cached.ingredients)
        names = {m.name for m in request.preferences.family_members}
        recipe = replace(
            cached,
            member_notes={k: v for k, v in cached.member_notes.items() if k in names},
            detected_allergens=report.detected_allergens,
            safety_warnings=report.safety_warnings,
            safety_score=report.safety_score,
            generation_cost=0.0,
            generation_time_ms=0,
            cache_hit=True,
        )
        logged = self._log_usage(UsageLedgerEntry(
            timestamp=now,
            user_id=request.user_id,
            cost=0.0,
            meal_type=request.meal_type,
            complexity_score=analysis.complexity_score,
            cache_hit=True,
            safety_warnings_count=len(recipe.safety_warnings),
            allergens_detected_count=len(recipe.detected_allergens),
        ))
        logger.info("Served cached %r to %s", recipe.title, request.user_id)
        return GenerationResult(
            success=True,
            recipe=recipe,
            family_summary=analysis.summary,
            storage_warning=not logged,
            user_message=None if logged else STORAGE_WARNING_MESSAGE,
            safety_degraded=report.degraded,
        )

    def _store_recipe(self, request: GenerationRequest, recipe: GeneratedRecipe, now: datetime) -> bool:
        try:
            self.repository.insert_generated_recipe(
                request.user_id, request.meal_type, recipe.to_json(), now
            )
        except _STORAGE_ERRORS as e:
            logger.error("Failed to store recipe %r for %s: %s", recipe.title, request.user_id, e)
            return False
        return True

    def _log_usage(self, entry: UsageLedgerEntry) -> bool:
        try:
            self.repository.insert_usage_entry(entry)
        except _STORAGE_ERRORS as e:
            logger.error("Failed to log usage for %s: %s", entry.user_id, e)
            return False
        return True

    def _handle_generation_failure(self, request: GenerationRequest, error: Exception) -> GenerationResult:
        category = getattr(error, "category", "invalid_response")
        logger.error("Recipe generation failed for %s (%s): %s",
                     request.user_id, category, error, exc_info=error)
        return GenerationResult(
            success=False,
            error="Recipe generation temporarily unavailable",
            error_kind=PROVIDER_FAILURE,
            failure_category=category,
            user_message=FALLBACK_MESSAGES.get(category, GENERIC_FALLBACK_MESSAGE),
            fallback_used=True,
        )

    async def generate_async(
        self,
        request: GenerationRequest,
        timeout: Optional[float] = None
    ) -> GenerationResult:
        """Run the pipeline in a worker thread under an overall deadline.

        The provider and storage timeouts still bound the worker itself, so
        a request abandoned here cannot keep a provider call open forever.
        """
        if timeout is None:
            timeout = self.config.provider_timeout_seconds + 2 * self.config.storage_timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.generate, request), timeout)
        except asyncio.TimeoutError:
            logger.error("Recipe generation for %s exceeded %.1fs", request.user_id, timeout)
            return GenerationResult(
                success=False,
                error="Recipe generation timed out",
                error_kind=PROVIDER_FAILURE,
                failure_category="network",
                user_message=FALLBACK_MESSAGES["network"],
                fallback_used=True,
            )


def generate(
    user_id: str,
    preferences: HouseholdPreferences,
    meal_type: str,
    special_occasion: Optional[SpecialOccasion] = None,
    pantry_items: Optional[Iterable[str]] = None,
    premium: bool = False,
    config: Optional[PipelineConfig] = None,
    orchestrator: Optional[RecipeOrchestrator] = None
) -> GenerationResult:
    """Generate one recipe for a household.

    Args:
        user_id: Requesting user
        preferences: Household snapshot
        meal_type: breakfast, lunch, dinner or snack
        special_occasion: Optional guest/occasion context
        pantry_items: Optional ingredients already at hand
        premium: Use the elevated daily cost ceiling
        config: Pipeline configuration (ignored when orchestrator is given)
        orchestrator: Existing orchestrator to reuse

    Raises:
        ValueError: If the request itself is invalid
    """
    request = GenerationRequest(
        user_id=user_id,
        preferences=preferences,
        meal_type=meal_type,
        special_occasion=special_occasion,
        pantry_items=tuple(pantry_items or ()),
        premium=premium,
    )
    if orchestrator is None:
        if config is None:
            raise ValueError("config or orchestrator is required")
        orchestrator = RecipeOrchestrator(config)
    return orchestrator.generate(request)
