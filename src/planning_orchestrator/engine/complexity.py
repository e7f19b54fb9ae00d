"""
Complexity scoring for planning tasks.

A task's score is the sum of the weights of its factor tags plus a
file-impact contribution, clamped to [0.0, 1.0]. Weights never subtract,
so adding a factor never lowers the score.
"""

from enum import Enum
from typing import Iterable


class FactorCategory(str, Enum):
	TECHNICAL = "technical"
	SCOPE = "scope"
	DOMAIN = "domain"


class FactorTag(str, Enum):
	"""Boolean task features that contribute to complexity."""
	NEW_FRAMEWORK = "NEW_FRAMEWORK"
	CROSS_SYSTEM_INTEGRATION = "CROSS_SYSTEM_INTEGRATION"
	REAL_TIME = "REAL_TIME"
	PAYMENT_PROCESSING = "PAYMENT_PROCESSING"
	AUTH_SECURITY = "AUTH_SECURITY"
	NEW_ARCHITECTURE = "NEW_ARCHITECTURE"
	BREAKING_CHANGE = "BREAKING_CHANGE"
	SCHEMA_CHANGE = "SCHEMA_CHANGE"
	UNFAMILIAR_DOMAIN = "UNFAMILIAR_DOMAIN"
	REGULATORY_COMPLIANCE = "REGULATORY_COMPLIANCE"
	THIRD_PARTY_API_COMPLEXITY = "THIRD_PARTY_API_COMPLEXITY"


FACTOR_WEIGHTS: dict[FactorTag, float] = {
	FactorTag.NEW_FRAMEWORK: 0.3,
	FactorTag.CROSS_SYSTEM_INTEGRATION: 0.3,
	FactorTag.REAL_TIME: 0.2,
	FactorTag.PAYMENT_PROCESSING: 0.2,
	FactorTag.AUTH_SECURITY: 0.2,
	FactorTag.NEW_ARCHITECTURE: 0.3,
	FactorTag.BREAKING_CHANGE: 0.2,
	FactorTag.SCHEMA_CHANGE: 0.2,
	FactorTag.UNFAMILIAR_DOMAIN: 0.2,
	FactorTag.REGULATORY_COMPLIANCE: 0.3,
	FactorTag.THIRD_PARTY_API_COMPLEXITY: 0.2,
}

FACTOR_CATEGORIES: dict[FactorTag, FactorCategory] = {
	FactorTag.NEW_FRAMEWORK: FactorCategory.TECHNICAL,
	FactorTag.CROSS_SYSTEM_INTEGRATION: FactorCategory.TECHNICAL,
	FactorTag.REAL_TIME: FactorCategory.TECHNICAL,
	FactorTag.PAYMENT_PROCESSING: FactorCategory.TECHNICAL,
	FactorTag.AUTH_SECURITY: FactorCategory.TECHNICAL,
	FactorTag.NEW_ARCHITECTURE: FactorCategory.SCOPE,
	FactorTag.BREAKING_CHANGE: FactorCategory.SCOPE,
	FactorTag.SCHEMA_CHANGE: FactorCategory.SCOPE,
	FactorTag.UNFAMILIAR_DOMAIN: FactorCategory.DOMAIN,
	FactorTag.REGULATORY_COMPLIANCE: FactorCategory.DOMAIN,
	FactorTag.THIRD_PARTY_API_COMPLEXITY: FactorCategory.DOMAIN,
}

# File impact bands (mutually exclusive)
LARGE_IMPACT_FILES = 10  # more than this many files
MEDIUM_IMPACT_FILES = 5  # at least this many files
LARGE_IMPACT_WEIGHT = 0.3
MEDIUM_IMPACT_WEIGHT = 0.2

MAX_SCORE = 1.0


def file_impact_weight(file_impact_count: int) -> float:
	"""Score contribution of the number of files a task touches."""
	if file_impact_count > LARGE_IMPACT_FILES:
		return LARGE_IMPACT_WEIGHT
	if file_impact_count >= MEDIUM_IMPACT_FILES:
		return MEDIUM_IMPACT_WEIGHT
	return 0.0


def score(flags: Iterable[FactorTag], file_impact_count: int) -> float:
	"""
	Compute a task's complexity score.

	Args:
		flags: Factor tags present on the task (duplicates count once)
		file_impact_count: Number of files the task touches (validated >= 0 upstream)

	Returns:
		Score in [0.0, 1.0]
	"""
	total = sum(FACTOR_WEIGHTS[tag] for tag in {FactorTag(t) for t in flags})
	total += file_impact_weight(file_impact_count)
	# Weights are tenths; rounding keeps float drift off the policy boundaries
	return min(round(total, 2), MAX_SCORE)


def score_breakdown(flags: Iterable[FactorTag], file_impact_count: int) -> dict[str, float]:
	"""Per-category contributions, for explaining a score to the user."""
	parts = {category.value: 0.0 for category in FactorCategory}
	for tag in {FactorTag(t) for t in flags}:
		parts[FACTOR_CATEGORIES[tag].value] += FACTOR_WEIGHTS[tag]
	parts["file_impact"] = file_impact_weight(file_impact_count)
	return {k: round(v, 2) for k, v in parts.items()}
