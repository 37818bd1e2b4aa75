"""
Stage vocabulary for case pipelines.

Each case category owns an ordered list of stage identifiers. The vocabulary
is built once from configuration and never mutated afterwards; services
receive it by injection rather than reading a module-level table.
"""

from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

from caseflow.app.core.exceptions import raise_config_error


class StageVocabulary:
    """
    Immutable mapping from case category to its ordered stage identifiers.

    Lookups are case-insensitive. Unknown or missing categories resolve to
    the fallback category (``other`` by default), so lookups never fail.
    """

    def __init__(
        self,
        stages_by_category: Mapping[str, Iterable[str]],
        fallback_category: str = "other"
    ):
        normalized: Dict[str, Tuple[str, ...]] = {}
        for category, stages in stages_by_category.items():
            key = category.strip().lower()
            stage_tuple = tuple(stages)
            if not stage_tuple:
                raise_config_error(
                    f"Stage list for category '{category}' is empty",
                    config_section="pipeline",
                    config_key="stage_vocabulary",
                    config_value=category
                )
            if len(set(stage_tuple)) != len(stage_tuple):
                raise_config_error(
                    f"Stage list for category '{category}' contains duplicates",
                    config_section="pipeline",
                    config_key="stage_vocabulary",
                    config_value=list(stage_tuple)
                )
            normalized[key] = stage_tuple

        fallback_key = fallback_category.strip().lower()
        if fallback_key not in normalized:
            raise_config_error(
                f"Stage vocabulary must define the fallback category '{fallback_category}'",
                config_section="pipeline",
                config_key="fallback_category",
                config_value=fallback_category
            )

        self._stages = MappingProxyType(normalized)
        self._fallback_category = fallback_key

    @classmethod
    def from_settings(cls, pipeline_settings) -> "StageVocabulary":
        """Build the vocabulary from ``PipelineSettings``."""
        return cls(
            pipeline_settings.stage_vocabulary,
            fallback_category=pipeline_settings.fallback_category
        )

    @property
    def fallback_category(self) -> str:
        return self._fallback_category

    @property
    def categories(self) -> Tuple[str, ...]:
        """All known category keys, in declaration order."""
        return tuple(self._stages.keys())

    def resolve_category(self, category: Optional[str]) -> str:
        """Return the vocabulary key used for ``category``."""
        if isinstance(category, str):
            key = category.strip().lower()
            if key in self._stages:
                return key
        return self._fallback_category

    def stages_for(self, category: Optional[str]) -> Tuple[str, ...]:
        """Ordered valid stages for ``category`` (fallback list if unknown)."""
        return self._stages[self.resolve_category(category)]

    def initial_stage(self, category: Optional[str]) -> str:
        return self.stages_for(category)[0]

    def is_valid_stage(self, category: Optional[str], stage: object) -> bool:
        return isinstance(stage, str) and stage in self.stages_for(category)

    def as_dict(self) -> Dict[str, Sequence[str]]:
        """Full category -> stages table, e.g. for populating a UI dropdown."""
        return {category: list(stages) for category, stages in self._stages.items()}

    def __contains__(self, category: object) -> bool:
        return isinstance(category, str) and category.strip().lower() in self._stages

    def __repr__(self) -> str:
        return f"StageVocabulary(categories={list(self._stages)!r})"
