# src/plan_quality/result.py

from __future__ import annotations

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional


class ResultType(Enum):
    PASSED = "PASSED"
    NOT_APPLICABLE = "NOT_APPLICABLE"
    ACTION_LEVEL_1 = "ACTION_LEVEL_1"
    ACTION_LEVEL_2 = "ACTION_LEVEL_2"
    ACTION_LEVEL_3 = "ACTION_LEVEL_3"

    @property
    def action_level(self) -> int:
        """0 para PASSED / NOT_APPLICABLE, 1–3 para los action levels."""
        if self.name.startswith("ACTION_LEVEL_"):
            return int(self.name[-1])
        return 0


# ---------------------------------------------------------
# Resultado individual de un assert
# ---------------------------------------------------------

@dataclass(frozen=True)
class ConstraintResult:
    """
    Resultado de un assert dentro de la cadena del PQAsserter.

    - constraint_id: id de la regla que lo produjo (None para asserts sueltos)
    - result_type: clasificación (PASSED / NOT_APPLICABLE / ACTION_LEVEL_n)
    - message: texto legible; vacío cuando pasa
    - value: detalle opcional (string)

    Es inmutable: la misma instancia puede aparecer varias veces en
    una cadena sin riesgo.
    """
    constraint_id: Optional[str]
    result_type: ResultType
    message: str = ""
    value: str = ""

    @property
    def is_success(self) -> bool:
        return self.result_type is ResultType.PASSED

    @property
    def is_applicable(self) -> bool:
        return self.result_type is not ResultType.NOT_APPLICABLE

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["result_type"] = self.result_type.value
        return d
