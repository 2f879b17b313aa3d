# src/plan_quality/engine.py

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from planning.items import MLCPlanType, PlanningItem
from plan_quality.asserter import PQAsserter
from plan_quality.config import ChainStep, get_asserter_texts, get_chain_profile, get_pq_logger
from plan_quality.result import ConstraintResult

logger = get_pq_logger("plan_quality.engine")


class UnknownCheckError(KeyError):
    """Un paso de la cadena nombra un check que no existe."""


class InvalidChainStepError(ValueError):
    """Un paso de la cadena está mal formado (no es dict, args no es lista, aridad...)."""


# Nombre del check en la config → método del PQAsserter.
# Sólo checks integrados: los asserts con predicado se encadenan en código.
CHECK_REGISTRY: Dict[str, str] = {
    "contains_valid_fraction_num": "contains_valid_fraction_num",
    "has_image": "has_image",
    "has_structure_set": "has_structure_set",
    "is_plan_setup": "is_plan_setup",
    "contains_one_or_more_electron_beams": "contains_one_or_more_electron_beams",
    "contains_one_or_more_photon_beams": "contains_one_or_more_photon_beams",
    "contains_one_or_more_proton_beams": "contains_one_or_more_proton_beams",
    "contains_non_empty_structures_by_id": "contains_non_empty_structures_by_id",
    "contains_one_or_more_non_empty_structure_by_id": "contains_one_or_more_non_empty_structure_by_id",
    "contains_non_empty_structures_by_dicom_type": "contains_non_empty_structures_by_dicom_type",
    "contains_one_or_more_non_empty_structures_by_dicom_type": "contains_one_or_more_non_empty_structures_by_dicom_type",
    "contains_treatment_beams_by_mlc_plan_type": "contains_treatment_beams_by_mlc_plan_type",
    "contains_one_or_more_treatment_beams_by_mlc_plan_type": "contains_one_or_more_treatment_beams_by_mlc_plan_type",
}

# Checks cuyo único argumento es un MLCPlanType (en JSON viene como string)
_MLC_CHECKS = {
    "contains_treatment_beams_by_mlc_plan_type",
    "contains_one_or_more_treatment_beams_by_mlc_plan_type",
}


# Checks que sólo reciben el planning item
_NO_ARG_CHECKS = {
    "contains_valid_fraction_num",
    "has_image",
    "has_structure_set",
    "is_plan_setup",
    "contains_one_or_more_electron_beams",
    "contains_one_or_more_photon_beams",
    "contains_one_or_more_proton_beams",
}


def _step_args(check: str, step: ChainStep) -> List[Any]:
    args = list(step.get("args", []))
    if check in _MLC_CHECKS:
        args = [MLCPlanType.parse(a) for a in args]
    return args


def _validate_step(i: int, step: Any) -> None:
    if not isinstance(step, dict):
        raise InvalidChainStepError(f"Paso {i}: se esperaba un objeto {{'check': ...}}, no {step!r}")

    check = step.get("check")
    if check not in CHECK_REGISTRY:
        raise UnknownCheckError(f"Paso {i}: check desconocido {check!r}")

    args = step.get("args", [])
    if not isinstance(args, (list, tuple)):
        raise InvalidChainStepError(f"Paso {i} ({check}): 'args' debe ser una lista, no {args!r}")

    if check in _NO_ARG_CHECKS:
        if args:
            raise InvalidChainStepError(f"Paso {i} ({check}): no admite argumentos")
    elif check in _MLC_CHECKS:
        if len(args) != 1:
            raise InvalidChainStepError(f"Paso {i} ({check}): necesita exactamente un MLCPlanType")
        try:
            MLCPlanType.parse(args[0])
        except ValueError as e:
            raise InvalidChainStepError(f"Paso {i} ({check}): {e}") from e
    elif not all(isinstance(a, str) for a in args):
        raise InvalidChainStepError(f"Paso {i} ({check}): los argumentos deben ser ids / tipos (str)")


def validate_chain(steps: List[ChainStep]) -> None:
    """
    Comprueba la forma de todos los pasos antes de evaluar ninguno:
      - cada paso es un dict con un 'check' conocido  → si no, UnknownCheckError
      - 'args' (opcional) es una lista con la aridad que pide el check
        (nada, un MLCPlanType, o ids / tipos DICOM)    → si no, InvalidChainStepError
    """
    if not isinstance(steps, (list, tuple)):
        raise InvalidChainStepError(f"La cadena debe ser una lista de pasos, no {steps!r}")
    for i, step in enumerate(steps):
        _validate_step(i, step)


def run_chain(
    pi: PlanningItem,
    steps: List[ChainStep],
    asserter: Optional[PQAsserter] = None,
) -> PQAsserter:
    """
    Aplica, en orden, cada paso de la cadena sobre el planning item.

    Si se pasa un asserter, los resultados se añaden a su cadena (útil
    para mezclar pasos de config con asserts de predicado en código).
    Valida TODOS los pasos antes de evaluar ninguno.
    """
    validate_chain(steps)
    asserter = asserter if asserter is not None else PQAsserter()

    for step in steps:
        check = step["check"]
        method = getattr(asserter, CHECK_REGISTRY[check])
        method(pi, *_step_args(check, step))
        logger.debug("%s → %s", check, asserter.results[-1].result_type.value)

    return asserter


def evaluate_item(
    pi: PlanningItem,
    profile: Optional[str] = "BASIC",
    overrides_path: str | Path | None = None,
) -> Optional[ConstraintResult]:
    """
    Interfaz de alto nivel: corre el perfil de cadena y devuelve
    el cumulative result.
    """
    steps = get_chain_profile(profile, overrides_path=overrides_path)
    asserter = PQAsserter(texts=get_asserter_texts(overrides_path=overrides_path))
    result = run_chain(pi, steps, asserter=asserter).cumulative_result
    if result is not None:
        logger.info(
            "Plan %s, perfil %s → %s %s",
            getattr(pi, "id", "<?>"), profile, result.result_type.value, result.message,
        )
    return result
