"""Editor completion registration for the script language."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from .core import ConstantBinding, VariableBinding

logger = logging.getLogger(__name__)

LANGUAGE_ID = "warpscript"
KIND_CONSTANT = "constant"
KIND_MACRO = "macro"
KIND_VARIABLE = "variable"


@dataclass(frozen=True)
class Completion:
    label: str
    kind: str


class LanguageRegistry:
    """Process-wide capability registry; a language registers once."""

    def __init__(self) -> None:
        self._capabilities: Dict[str, List[Completion]] = {}

    def is_registered(self, language_id: str) -> bool:
        return language_id in self._capabilities

    def register(self, language_id: str, completions: Iterable[Completion]) -> bool:
        if self.is_registered(language_id):
            return False
        self._capabilities[language_id] = list(completions)
        logger.info("Registered %d completions for %s", len(self._capabilities[language_id]), language_id)
        return True

    def completions(self, language_id: str) -> List[Completion]:
        return list(self._capabilities.get(language_id, []))

    def clear(self) -> None:
        self._capabilities.clear()


REGISTRY = LanguageRegistry()


def custom_completions(
    constants: Sequence[ConstantBinding] = (),
    macros: Sequence[ConstantBinding] = (),
    variables: Sequence[VariableBinding] = (),
) -> List[Completion]:
    return (
        [Completion(f"${item.name}", KIND_CONSTANT) for item in constants]
        + [Completion(f"@{item.name}", KIND_MACRO) for item in macros]
        + [Completion(f"${item.name}", KIND_VARIABLE) for item in variables]
    )


def register_language(
    constants: Sequence[ConstantBinding] = (),
    macros: Sequence[ConstantBinding] = (),
    variables: Sequence[VariableBinding] = (),
    *,
    registry: Optional[LanguageRegistry] = None,
    language_id: str = LANGUAGE_ID,
) -> List[Completion]:
    """Register once and return whatever the registry holds for the language."""
    target = registry if registry is not None else REGISTRY
    target.register(language_id, custom_completions(constants, macros, variables))
    return target.completions(language_id)
