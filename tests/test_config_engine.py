"""
Tests de config, overrides JSON y motor de cadenas.
"""

import json

import pytest

from planning.items import BeamInfo, ImageInfo, MLCPlanType, PlanSetup, PlanSum, StructureInfo, StructureSet
from plan_quality.asserter import PQAsserter
from plan_quality.config import (
    ASSERTER_TEXTS,
    CHAIN_PROFILES,
    get_asserter_texts,
    get_chain_profile,
    get_logging_config,
    get_priority_result_type,
    list_chain_profiles,
)
from plan_quality.config_overrides import load_overrides, save_overrides
from plan_quality.engine import (
    CHECK_REGISTRY,
    InvalidChainStepError,
    UnknownCheckError,
    evaluate_item,
    run_chain,
    validate_chain,
)
from plan_quality.result import ResultType


def make_vmat_plan(num_fractions=28) -> PlanSetup:
    image = ImageInfo(id="CT")
    structures = [
        StructureInfo(id="BODY", dicom_type="EXTERNAL", volume_cc=25000.0),
        StructureInfo(id="PTV_78", dicom_type="PTV", volume_cc=110.0),
    ]
    beams = [
        BeamInfo(id="ARC1", energy_mode_display_name="6X", mlc_plan_type=MLCPlanType.VMAT),
        BeamInfo(id="ARC2", energy_mode_display_name="6X", mlc_plan_type=MLCPlanType.VMAT),
    ]
    return PlanSetup(
        id="VMAT",
        structure_set=StructureSet(id="SS", structures=structures, image=image),
        beams=beams,
        num_fractions=num_fractions,
    )


# =============================================================================
# OVERRIDES
# =============================================================================

class TestOverrides:

    def test_missing_file_gives_defaults(self, tmp_path):
        data = load_overrides(tmp_path / "nope.json")
        assert data == {"texts": {}, "chains": {}}

    def test_broken_file_gives_defaults(self, tmp_path):
        p = tmp_path / "broken.json"
        p.write_text("{ not json", encoding="utf-8")
        assert load_overrides(p) == {"texts": {}, "chains": {}}

    def test_non_object_gives_defaults(self, tmp_path):
        p = tmp_path / "list.json"
        p.write_text("[1, 2]", encoding="utf-8")
        assert load_overrides(p) == {"texts": {}, "chains": {}}

    def test_save_and_load(self, tmp_path):
        p = tmp_path / "sub" / "ov.json"
        save_overrides({"texts": {"NO_IMAGE": "Sin CT"}, "ignored": 1}, p)

        assert json.loads(p.read_text(encoding="utf-8")) == {"texts": {"NO_IMAGE": "Sin CT"}, "chains": {}}
        assert load_overrides(p)["texts"] == {"NO_IMAGE": "Sin CT"}

    def test_text_overrides_only_known_keys(self, tmp_path):
        p = tmp_path / "ov.json"
        save_overrides({"texts": {"NO_IMAGE": "Sin CT", "UNKNOWN_KEY": "x"}}, p)

        texts = get_asserter_texts(overrides_path=p)
        assert texts["NO_IMAGE"] == "Sin CT"
        assert "UNKNOWN_KEY" not in texts
        # el dict base no se toca
        assert ASSERTER_TEXTS["NO_IMAGE"] == "No image"

    def test_overridden_text_reaches_results(self, tmp_path):
        p = tmp_path / "ov.json"
        save_overrides({"texts": {"NO_IMAGE": "Sin CT"}}, p)

        a = PQAsserter(texts=get_asserter_texts(overrides_path=p)).has_image(PlanSetup(id="P"))
        assert a.results[-1].message == "Sin CT"

    def test_text_override_with_unknown_field_is_ignored(self, tmp_path):
        p = tmp_path / "ov.json"
        save_overrides({"texts": {"EXCEPTION_SUFFIX": " => {err}", "NO_IMAGE": "Sin CT"}}, p)

        texts = get_asserter_texts(overrides_path=p)
        assert texts["EXCEPTION_SUFFIX"] == ASSERTER_TEXTS["EXCEPTION_SUFFIX"]
        assert texts["NO_IMAGE"] == "Sin CT"

    @pytest.mark.parametrize(
        "template",
        ["Missing {id", "Missing {}", "Missing {0}", "Missing {id.upper}", "Missing {id:>5}", 42],
    )
    def test_bad_structure_text_overrides_are_ignored(self, tmp_path, template):
        p = tmp_path / "ov.json"
        save_overrides({"texts": {"MISSING_STRUCTURE_ID": template}}, p)

        texts = get_asserter_texts(overrides_path=p)
        assert texts["MISSING_STRUCTURE_ID"] == ASSERTER_TEXTS["MISSING_STRUCTURE_ID"]

    def test_text_override_may_drop_fields(self, tmp_path):
        p = tmp_path / "ov.json"
        save_overrides({"texts": {"MISSING_STRUCTURE_ID": "Falta {id}", "EXCEPTION_SUFFIX": " (error)"}}, p)

        texts = get_asserter_texts(overrides_path=p)
        assert texts["MISSING_STRUCTURE_ID"] == "Falta {id}"
        assert texts["EXCEPTION_SUFFIX"] == " (error)"

    def test_raising_predicate_with_overridden_texts_keeps_chain_going(self, tmp_path):
        p = tmp_path / "ov.json"
        save_overrides({"texts": {"EXCEPTION_SUFFIX": " => {err}"}}, p)
        plan = make_vmat_plan()

        def boom(pi):
            raise RuntimeError("kaput")

        a = PQAsserter(texts=get_asserter_texts(overrides_path=p)).assert_(plan, boom, "m").has_image(plan)

        assert a.results[0].message == "m => Exception thrown : kaput"
        assert a.results[1].is_success

    def test_non_object_sections_are_dropped(self, tmp_path):
        p = tmp_path / "ov.json"
        p.write_text(json.dumps({"texts": ["x"], "chains": {"A": [{"check": "has_image"}]}, "extra": 1}), encoding="utf-8")

        assert load_overrides(p) == {"texts": {}, "chains": {"A": [{"check": "has_image"}]}}

    def test_chain_overrides_add_profiles(self, tmp_path):
        p = tmp_path / "ov.json"
        save_overrides({"chains": {"my_clinic": [{"check": "has_image"}]}}, p)

        profiles = list_chain_profiles(overrides_path=p)
        assert profiles["MY_CLINIC"] == [{"check": "has_image"}]
        assert set(CHAIN_PROFILES) <= set(profiles)
        assert get_chain_profile("my_clinic", overrides_path=p) == [{"check": "has_image"}]


# =============================================================================
# CONFIG GETTERS
# =============================================================================

class TestConfigGetters:

    @pytest.mark.parametrize(
        "priority, expected",
        [
            (None, ResultType.NOT_APPLICABLE),
            ("default", ResultType.NOT_APPLICABLE),
            ("critical", ResultType.ACTION_LEVEL_3),
            (" Mid ", ResultType.ACTION_LEVEL_2),
            ("LOW", ResultType.ACTION_LEVEL_1),
        ],
    )
    def test_priority_result_type(self, priority, expected):
        assert get_priority_result_type(priority) == expected

    def test_unknown_priority(self):
        with pytest.raises(KeyError):
            get_priority_result_type("urgent")

    def test_unknown_profile(self, tmp_path):
        with pytest.raises(KeyError):
            get_chain_profile("NOPE", overrides_path=tmp_path / "none.json")

    def test_default_profile_is_basic(self, tmp_path):
        assert get_chain_profile(None, overrides_path=tmp_path / "none.json") == CHAIN_PROFILES["BASIC"]

    def test_profiles_only_use_registered_checks(self):
        for steps in CHAIN_PROFILES.values():
            for step in steps:
                assert step["check"] in CHECK_REGISTRY

    def test_logging_config_level(self):
        cfg = get_logging_config("debug")
        assert {c["level"] for c in cfg["loggers"].values()} == {"DEBUG"}
        # copia: el dict base no cambia
        assert get_logging_config()["loggers"]["plan_quality"]["level"] == "INFO"


# =============================================================================
# ENGINE
# =============================================================================

class TestEngine:

    def test_run_chain_in_order(self):
        plan = make_vmat_plan(num_fractions=None)
        steps = [
            {"check": "has_image"},
            {"check": "contains_valid_fraction_num"},
            {"check": "contains_non_empty_structures_by_id", "args": ["BODY", "PTV_78"]},
        ]
        a = run_chain(plan, steps, asserter=PQAsserter(texts=dict(ASSERTER_TEXTS)))

        assert [r.result_type for r in a.results] == [
            ResultType.PASSED, ResultType.NOT_APPLICABLE, ResultType.PASSED,
        ]
        assert a.cumulative_result.message == "Not valid fraction number"

    def test_mlc_type_given_as_string(self):
        plan = make_vmat_plan()
        a = run_chain(plan, [{"check": "contains_treatment_beams_by_mlc_plan_type", "args": ["VMAT"]}])
        assert a.results[-1].is_success

    def test_unknown_check_fails_before_evaluating(self):
        a = PQAsserter(texts=dict(ASSERTER_TEXTS))
        with pytest.raises(UnknownCheckError):
            run_chain(make_vmat_plan(), [{"check": "has_image"}, {"check": "has_dose"}], asserter=a)
        assert a.results == []

    def test_appends_to_given_asserter(self):
        plan = make_vmat_plan()
        a = PQAsserter(texts=dict(ASSERTER_TEXTS)).assert_low_priority(plan, lambda pi: False, "custom")
        run_chain(plan, [{"check": "has_image"}], asserter=a)

        assert len(a.results) == 2
        assert a.cumulative_result.message == "custom"

    def test_photon_vmat_profile_passes(self, tmp_path):
        res = evaluate_item(make_vmat_plan(), "PHOTON_VMAT", overrides_path=tmp_path / "none.json")
        assert res.is_success

    def test_photon_vmat_profile_on_plan_sum(self, tmp_path):
        psum = PlanSum(id="SUM", plan_setups=[make_vmat_plan()])
        res = evaluate_item(psum, "PHOTON_VMAT", overrides_path=tmp_path / "none.json")

        assert res.result_type == ResultType.NOT_APPLICABLE
        assert res.message == "Must be plan setup only"

    def test_electron_profile_on_photon_plan(self, tmp_path):
        res = evaluate_item(make_vmat_plan(), "ELECTRON", overrides_path=tmp_path / "none.json")
        assert res.message == "Doesn't contain electron fields"

    def test_string_args_are_rejected(self):
        plan = make_vmat_plan()
        a = PQAsserter(texts=dict(ASSERTER_TEXTS))
        with pytest.raises(InvalidChainStepError, match="'args' debe ser una lista"):
            run_chain(plan, [{"check": "contains_non_empty_structures_by_id", "args": "BODY"}], asserter=a)
        assert a.results == []

    @pytest.mark.parametrize(
        "steps",
        [
            ["has_image"],
            [{"check": "has_image", "args": ["BODY"]}],
            [{"check": "contains_treatment_beams_by_mlc_plan_type"}],
            [{"check": "contains_treatment_beams_by_mlc_plan_type", "args": ["VMAT", "STATIC"]}],
            [{"check": "contains_one_or_more_treatment_beams_by_mlc_plan_type", "args": ["HELICAL"]}],
            [{"check": "contains_non_empty_structures_by_dicom_type", "args": [1]}],
            {"check": "has_image"},
        ],
    )
    def test_malformed_steps_are_rejected(self, steps):
        with pytest.raises(InvalidChainStepError):
            validate_chain(steps)

    def test_step_without_check_is_unknown(self):
        with pytest.raises(UnknownCheckError):
            validate_chain([{"args": []}])

    def test_default_profiles_are_well_formed(self):
        for steps in CHAIN_PROFILES.values():
            validate_chain(steps)
