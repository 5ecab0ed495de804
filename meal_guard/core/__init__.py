"""
Core modules for meal-guard.

This package contains family constraint aggregation, admission control,
request construction, allergen detection and scoring, the recipe cache and
the generation orchestrator.
"""
