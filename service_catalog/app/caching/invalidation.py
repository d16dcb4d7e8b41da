"""
Write-driven cache invalidation.

Each entity type registers the key families its writes make stale. Writes to
child entities also clear the views that embed them (the parent college detail,
dashboard aggregates, predictor results) through a declarative dependency table.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

from shared.errors import ValidationError
from shared.logging import entity_context, get_logger
from .key_patterns import KeyPattern
from .read_through import InvalidationReport, TwoTierCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class EntityPatterns:
    """Key families owned by one entity type.

    ``always`` patterns are cleared on every write; ``keyed`` templates carry a
    ``{key}`` slot filled with the written entity's key (or widened to ``*``).
    """
    always: Tuple[KeyPattern, ...] = ()
    keyed: Tuple[KeyPattern, ...] = ()

    def resolve(self, entity_key: Optional[str] = None) -> List[KeyPattern]:
        return list(self.always) + [pattern.bind(entity_key) for pattern in self.keyed]


def _patterns(*templates: str) -> Tuple[KeyPattern, ...]:
    return tuple(KeyPattern(template) for template in templates)


ENTITY_PATTERNS: Dict[str, EntityPatterns] = {
    "college": EntityPatterns(
        always=_patterns("colleges:*", "college-search:*", "college-filters:*"),
        keyed=_patterns("college:slug:{key}", "placement:college:{key}"),
    ),
    "placement": EntityPatterns(
        always=_patterns("placements:*"),
        keyed=_patterns("placementsBySlug:{key}"),
    ),
    "placement_stats": EntityPatterns(keyed=_patterns("placementStats:{key}:*")),
    "top_recruiter": EntityPatterns(keyed=_patterns("topRecruiters:{key}:*")),
    "cutoff": EntityPatterns(always=_patterns("cutoffs:*", "cutoff-filters:*")),
    "news": EntityPatterns(
        always=_patterns("news:list:*", "news:trending:*", "news:related:*"),
        keyed=_patterns("news:slug:{key}"),
    ),
    "dashboard": EntityPatterns(always=_patterns("dashboard:*")),
    "predictor": EntityPatterns(always=_patterns("predictor:*")),
    "activity": EntityPatterns(always=_patterns("recentActivities:*", "entityActivities:*", "activityStats:*")),
}

# Views that embed or are computed from an entity's data. One level deep;
# dependents are resolved with the same entity key (children are keyed by
# their parent college slug).
DEPENDENCIES: Dict[str, Tuple[str, ...]] = {
    "college": ("dashboard", "predictor"),
    "placement": ("college", "dashboard"),
    "placement_stats": ("college", "dashboard"),
    "top_recruiter": ("college", "dashboard"),
    "cutoff": ("college", "dashboard", "predictor"),
    "news": ("dashboard",),
    "dashboard": (),
    "predictor": (),
    "activity": (),
}


class InvalidationCoordinator:
    """Resolves an entity write to key patterns and clears them from both tiers."""

    def __init__(
        self,
        cache: TwoTierCache,
        registry: Optional[Dict[str, EntityPatterns]] = None,
        dependencies: Optional[Dict[str, Tuple[str, ...]]] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.cache = cache
        self.registry = registry if registry is not None else ENTITY_PATTERNS
        self.dependencies = dependencies if dependencies is not None else DEPENDENCIES
        self.metrics = metrics
        self.logger = get_logger("catalog.cache.invalidation")

    @property
    def entity_types(self) -> List[str]:
        return sorted(self.registry)

    def resolve(self, entity_type: str, entity_key: Optional[str] = None) -> List[KeyPattern]:
        """Patterns for the entity and its dependents, deduplicated in resolution order."""
        if entity_type not in self.registry:
            raise ValidationError(
                f"Unknown entity type: {entity_type}",
                details={"entity_type": entity_type, "known": self.entity_types}
            )

        resolved: List[KeyPattern] = []
        for name in (entity_type,) + tuple(self.dependencies.get(entity_type, ())):
            for pattern in self.registry[name].resolve(entity_key):
                if pattern not in resolved:
                    resolved.append(pattern)
        return resolved

    async def on_write(self, entity_type: str, entity_key: Optional[str] = None) -> InvalidationReport:
        """Clear every cache family a write to ``entity_type`` made stale.

        Best-effort: tier failures are reported and logged, never raised.
        """
        patterns = self.resolve(entity_type, entity_key)
        with entity_context(entity_type, entity_key):
            report = await self.cache.invalidate(patterns)
            if self.metrics:
                self.metrics.record_invalidation(entity_type)

            log = self.logger.warning if report.errors else self.logger.info
            log(
                "Invalidated caches after write",
                entity_type=entity_type,
                entity_key=entity_key,
                patterns=len(report.patterns),
                local_deleted=report.local_deleted,
                shared_deleted=report.shared_deleted,
                errors=report.errors
            )
        return report

    def families(self) -> List[KeyPattern]:
        """Every registered family widened to all keys, for an administrative flush."""
        families: List[KeyPattern] = []
        for entity_type in self.entity_types:
            for pattern in self.registry[entity_type].resolve():
                if pattern not in families:
                    families.append(pattern)
        return families

    async def flush(self) -> InvalidationReport:
        return await self.cache.flush(self.families())

