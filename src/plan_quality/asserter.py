# src/plan_quality/asserter.py

"""
asserter.py
===========

PQAsserter: cadena fluida de asserts de calidad de plan.

Cada método:
  - recibe el planning item (y parámetros propios del check),
  - evalúa un predicado o condición integrada,
  - añade EXACTAMENTE un ConstraintResult a `results`,
  - devuelve el propio asserter para poder encadenar.

Uso típico:

    res = (
        PQAsserter()
        .has_structure_set(plan)
        .contains_non_empty_structures_by_id(plan, "BODY", "PTV")
        .assert_critical_priority(plan, lambda pi: pi.number_of_fractions() <= 40,
                                  "Too many fractions")
        .cumulative_result
    )

Nada de lo que pase en un check corta la cadena: los predicados que
lanzan excepción cuentan como fallo y el mensaje lleva el error.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from planning.items import MLCPlanType, PlanningItem, PlanSetup, PlanSum
from planning.naming import modality_from_energy_mode
from plan_quality.config import get_asserter_texts, get_pq_logger, get_priority_result_type
from plan_quality.result import ConstraintResult, ResultType

logger = get_pq_logger("plan_quality.asserter")

Assertion = Callable[[PlanningItem], bool]


class PQAsserter:
    def __init__(self, texts: Optional[Dict[str, str]] = None):
        self.results: List[ConstraintResult] = []
        self._texts = texts if texts is not None else get_asserter_texts()

    @property
    def cumulative_result(self) -> Optional[ConstraintResult]:
        """
        Primer resultado que no pasa; si todos pasan, el primero.
        None si la cadena está vacía.
        """
        for r in self.results:
            if not r.is_success:
                return r
        return self.results[0] if self.results else None

    # -----------------------------------------------------
    # Helpers internos
    # -----------------------------------------------------

    def _text(self, key: str, **kwargs) -> str:
        return self._texts[key].format(**kwargs)

    def _add(self, result_type: ResultType, message: str = "") -> "PQAsserter":
        self.results.append(ConstraintResult(None, result_type, message))
        return self

    def _passed(self) -> "PQAsserter":
        return self._add(ResultType.PASSED)

    def _not_applicable(self, message: str) -> "PQAsserter":
        return self._add(ResultType.NOT_APPLICABLE, message)

    def _assert_with(
        self,
        pi: PlanningItem,
        assertion: Assertion,
        failed_message: str,
        failure_type: ResultType,
    ) -> "PQAsserter":
        passed = False
        try:
            passed = bool(assertion(pi))
        except Exception as e:
            # El predicado es código de usuario: cualquier fallo cuenta como no pasado
            logger.warning("Assertion %r lanzó %s: %s", failed_message, type(e).__name__, e)
            failed_message += self._text("EXCEPTION_SUFFIX", error=e)

        return self._add(ResultType.PASSED if passed else failure_type, failed_message)

    def _require_plan_setup(self, pi: PlanningItem) -> bool:
        """
        Corre is_plan_setup; si falla, clona ese resultado en la cadena
        (queda dos veces) y devuelve False.
        """
        check = self.is_plan_setup(pi).results[-1]
        if not check.is_success:
            self.results.append(check)
            return False
        return True

    def _contains_modality(self, pi: PlanningItem, modality: str, missing_key: str) -> "PQAsserter":
        if not self._require_plan_setup(pi):
            return self

        energy_modes = [b.energy_mode_display_name for b in (pi.get_beams() or [])]
        if not any(modality_from_energy_mode(e) == modality for e in energy_modes):
            return self._not_applicable(self._text(missing_key))
        return self._passed()

    # -----------------------------------------------------
    # Asserts con predicado de usuario
    # -----------------------------------------------------

    def assert_(self, pi: PlanningItem, assertion: Assertion, failed_message: str) -> "PQAsserter":
        """Si el predicado no pasa → NOT_APPLICABLE."""
        return self._assert_with(pi, assertion, failed_message, get_priority_result_type(None))

    def assert_critical_priority(
        self, pi: PlanningItem, assertion: Assertion, failed_message: str
    ) -> "PQAsserter":
        """Si el predicado no pasa → ACTION_LEVEL_3."""
        return self._assert_with(pi, assertion, failed_message, get_priority_result_type("critical"))

    def assert_mid_priority(
        self, pi: PlanningItem, assertion: Assertion, failed_message: str
    ) -> "PQAsserter":
        """Si el predicado no pasa → ACTION_LEVEL_2."""
        return self._assert_with(pi, assertion, failed_message, get_priority_result_type("mid"))

    def assert_low_priority(
        self, pi: PlanningItem, assertion: Assertion, failed_message: str
    ) -> "PQAsserter":
        """Si el predicado no pasa → ACTION_LEVEL_1."""
        return self._assert_with(pi, assertion, failed_message, get_priority_result_type("low"))

    # -----------------------------------------------------
    # Checks integrados: fracciones, imagen, structure set, tipo de plan
    # -----------------------------------------------------

    def contains_valid_fraction_num(self, pi: PlanningItem) -> "PQAsserter":
        num_fx: Optional[int] = None
        if isinstance(pi, (PlanSum, PlanSetup)):
            num_fx = pi.number_of_fractions()

        if num_fx is None:
            return self._not_applicable(self._text("INVALID_FRACTION_NUM"))
        return self._passed()

    def has_image(self, pi: PlanningItem) -> "PQAsserter":
        if pi.get_image() is None:
            return self._not_applicable(self._text("NO_IMAGE"))
        return self._passed()

    def has_structure_set(self, pi: PlanningItem) -> "PQAsserter":
        if pi.get_structures() is None:
            return self._not_applicable(self._text("NO_STRUCTURE_SET_HAS"))
        return self._passed()

    def is_plan_setup(self, pi: PlanningItem) -> "PQAsserter":
        if isinstance(pi, PlanSum):
            return self._not_applicable(self._text("NOT_PLAN_SETUP"))
        return self._passed()

    # -----------------------------------------------------
    # Modalidad de los beams (sólo plan individual)
    # -----------------------------------------------------

    def contains_one_or_more_electron_beams(self, pi: PlanningItem) -> "PQAsserter":
        return self._contains_modality(pi, "ELECTRON", "NO_ELECTRON_FIELDS")

    def contains_one_or_more_photon_beams(self, pi: PlanningItem) -> "PQAsserter":
        return self._contains_modality(pi, "PHOTON", "NO_PHOTON_FIELDS")

    def contains_one_or_more_proton_beams(self, pi: PlanningItem) -> "PQAsserter":
        return self._contains_modality(pi, "PROTON", "NO_PROTON_FIELDS")

    # -----------------------------------------------------
    # Estructuras
    # -----------------------------------------------------

    def contains_non_empty_structures_by_id(self, pi: PlanningItem, *structure_ids: str) -> "PQAsserter":
        """Todas las estructuras pedidas deben existir y no estar vacías."""
        if pi.get_structures() is None:
            return self._not_applicable(self._text("NO_STRUCTURE_SET"))

        for sid in structure_ids:
            if not pi.contains_structure(sid):
                return self._not_applicable(self._text("MISSING_STRUCTURE_ID", id=sid))
        return self._passed()

    def contains_one_or_more_non_empty_structure_by_id(
        self, pi: PlanningItem, *structure_ids: str
    ) -> "PQAsserter":
        """Basta con que una de las estructuras pedidas exista y no esté vacía."""
        if pi.get_structures() is None:
            return self._not_applicable(self._text("NO_STRUCTURE_SET"))

        for sid in structure_ids:
            if pi.contains_structure(sid):
                return self._passed()
        return self._not_applicable(
            self._text("NONE_OF_STRUCTURES", candidates=",".join(structure_ids))
        )

    def contains_non_empty_structures_by_dicom_type(self, pi: PlanningItem, *dicom_types: str) -> "PQAsserter":
        structures = pi.get_structures()
        if structures is None:
            return self._not_applicable(self._text("NO_STRUCTURE_SET"))

        for dt in dicom_types:
            if not any(s.dicom_type == dt and not s.is_empty for s in structures):
                return self._not_applicable(self._text("MISSING_STRUCTURE_TYPE", dicom_type=dt))
        return self._passed()

    def contains_one_or_more_non_empty_structures_by_dicom_type(
        self, pi: PlanningItem, *dicom_types: str
    ) -> "PQAsserter":
        structures = pi.get_structures()
        if structures is None:
            return self._not_applicable(self._text("NO_STRUCTURE_SET"))

        for dt in dicom_types:
            if any(s.dicom_type == dt and not s.is_empty for s in structures):
                return self._passed()
        return self._not_applicable(
            self._text("NONE_OF_STRUCTURES", candidates=",".join(dicom_types))
        )

    # -----------------------------------------------------
    # Beams por MLCPlanType
    # -----------------------------------------------------

    def contains_treatment_beams_by_mlc_plan_type(self, pi: PlanningItem, mlc_type: MLCPlanType) -> "PQAsserter":
        """Todos los beams deben ser del tipo pedido."""
        mlc_type = MLCPlanType.parse(mlc_type)
        beams = pi.get_beams()
        if not beams:
            return self._not_applicable(self._text("NO_BEAMS"))

        for beam in beams:
            if beam.mlc_plan_type != mlc_type:
                return self._not_applicable(
                    self._text("BEAM_WRONG_MLC_TYPE", beam_id=beam.id, mlc_type=str(mlc_type))
                )
        return self._passed()

    def contains_one_or_more_treatment_beams_by_mlc_plan_type(
        self, pi: PlanningItem, mlc_type: MLCPlanType
    ) -> "PQAsserter":
        mlc_type = MLCPlanType.parse(mlc_type)
        beams = pi.get_beams()
        if not beams:
            return self._not_applicable(self._text("NO_BEAMS"))

        for beam in beams:
            if beam.mlc_plan_type == mlc_type:
                return self._passed()
        return self._not_applicable(self._text("NO_BEAM_OF_MLC_TYPE", mlc_type=str(mlc_type)))
