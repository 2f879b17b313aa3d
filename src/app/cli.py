# src/app/cli.py

"""
CLI sencilla para correr una cadena de asserts de calidad sobre un plan.

Uso típico:

    python -m app.cli --plan-id P001 --ct ./data/P001/CT \
        --rtstruct ./data/P001/RTSTRUCT.dcm --rtplan ./data/P001/RTPLAN.dcm \
        --profile PHOTON_VMAT

Qué hace:
  1) Construye un PlanSetup desde DICOM (build_plan_setup_from_dicom).
  2) Corre el perfil de cadena pedido (plan_quality.engine.run_chain).
  3) Imprime cada resultado y el cumulative result (o JSON con --json).

Código de salida: 0 si el cumulative result pasa, 1 si no, 2 si la
entrada es inválida.
"""

import argparse
import json
import logging.config
import sys

from planning.build_item import build_plan_setup_from_dicom
from plan_quality.asserter import PQAsserter
from plan_quality.config import (
    get_asserter_texts,
    get_chain_profile,
    get_logging_config,
    list_chain_profiles,
)
from plan_quality.engine import UnknownCheckError, run_chain, validate_chain

EXIT_OK = 0
EXIT_NOT_PASSED = 1
EXIT_BAD_INPUT = 2


def _print_results(plan_id, profile, asserter):
    print("\n" + "=" * 70)
    print(f" PLAN QUALITY - Plan: {plan_id}  (perfil {profile})")
    print("=" * 70)

    # OJO: un check con short-circuit puede dejar dos resultados
    for i, res in enumerate(asserter.results, start=1):
        print(f"  {i:>2}. [{res.result_type.value:<15}] {res.message}")

    cumulative = asserter.cumulative_result
    print("-" * 70)
    if cumulative is None:
        print("  Cadena vacía: sin resultado.")
    else:
        msg = f" - {cumulative.message}" if cumulative.message else ""
        print(f"  RESULTADO: {cumulative.result_type.value}{msg}")
    print("")


def build_parser():
    parser = argparse.ArgumentParser(
        description="CLI de asserts de calidad de plan (PQAsserter)."
    )
    parser.add_argument("--plan-id", type=str, default="PLAN", help="Id del plan (para el reporte).")
    parser.add_argument("--ct", type=str, default=None, help="Carpeta con la serie CT DICOM.")
    parser.add_argument("--rtstruct", type=str, default=None, help="Ruta al RTSTRUCT (requiere --ct).")
    parser.add_argument("--rtplan", type=str, default=None, help="Ruta al RTPLAN.")
    parser.add_argument("--profile", type=str, default="BASIC", help="Perfil de cadena (por defecto BASIC).")
    parser.add_argument("--overrides", type=str, default=None, help="JSON de overrides (textos / cadenas).")
    parser.add_argument("--list-profiles", action="store_true", help="Lista los perfiles disponibles y sale.")
    parser.add_argument("--json", action="store_true", help="Salida en JSON.")
    parser.add_argument("--verbose", action="store_true", help="Logging en nivel DEBUG.")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.config.dictConfig(get_logging_config("DEBUG" if args.verbose else None))

    if args.list_profiles:
        for name, steps in sorted(list_chain_profiles(overrides_path=args.overrides).items()):
            try:
                validate_chain(steps)
            except (ValueError, KeyError) as e:
                print(f"{name}: [inválido] {e}")
                continue
            print(f"{name}: " + ", ".join(s["check"] for s in steps))
        return EXIT_OK

    try:
        steps = get_chain_profile(args.profile, overrides_path=args.overrides)
        validate_chain(steps)  # antes de leer DICOM
        plan = build_plan_setup_from_dicom(
            plan_id=args.plan_id,
            ct_folder=args.ct,
            rtstruct_path=args.rtstruct,
            rtplan_path=args.rtplan,
        )
        texts = get_asserter_texts(overrides_path=args.overrides)
        asserter = run_chain(plan, steps, asserter=PQAsserter(texts=texts))
    except (FileNotFoundError, ValueError, KeyError) as e:
        # UnknownCheckError es un KeyError, InvalidChainStepError un ValueError
        kind = "Check" if isinstance(e, UnknownCheckError) else type(e).__name__
        print(f"[ERROR] {kind}: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT

    cumulative = asserter.cumulative_result

    if args.json:
        print(json.dumps(
            {
                "plan_id": args.plan_id,
                "profile": args.profile,
                "results": [r.to_dict() for r in asserter.results],
                "cumulative_result": cumulative.to_dict() if cumulative else None,
            },
            indent=2,
        ))
    else:
        _print_results(args.plan_id, args.profile, asserter)

    if cumulative is not None and cumulative.is_success:
        return EXIT_OK
    return EXIT_NOT_PASSED


if __name__ == "__main__":
    sys.exit(main())
