# src/planning/build_item.py

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np

from planning.items import (
    BeamInfo,
    ImageInfo,
    MLCPlanType,
    PlanSetup,
    StructureInfo,
    StructureSet,
    Technique,
)
from planning.naming import energy_mode_display_name
from planning.dicom_io import (
    load_ct_series,
    load_rtstruct_masks,
    load_rtstruct_types,
    load_rtplan,
)

logger = logging.getLogger(__name__)

_MLC_DEVICE_TYPES = {"MLCX", "MLCY"}


def _volume_cc(mask: np.ndarray, spacing_zyx: Tuple[float, float, float]) -> float:
    dz, dy, dx = spacing_zyx
    return int(np.count_nonzero(mask)) * float(dz * dy * dx) / 1000.0  # mm^3 → cc


def _beam_has_mlc(beam_ds) -> bool:
    for dev in getattr(beam_ds, "BeamLimitingDeviceSequence", []):
        if str(getattr(dev, "RTBeamLimitingDeviceType", "")).upper() in _MLC_DEVICE_TYPES:
            return True
    return False


def _beam_rotates(beam_ds) -> bool:
    """
    True si el gantry se mueve: GantryRotationDirection CW/CCW en el
    primer control point, o ángulos inicial/final distintos.
    """
    cps = getattr(beam_ds, "ControlPointSequence", None)
    if not cps:
        return False

    rot_dir = str(getattr(cps[0], "GantryRotationDirection", "") or "").upper()
    if rot_dir in ("CW", "CCW"):
        return True

    if len(cps) >= 2:
        g0 = float(getattr(cps[0], "GantryAngle", 0.0))
        g1 = float(getattr(cps[-1], "GantryAngle", g0))
        return abs(g1 - g0) > 1.0
    return False


def _mlc_moves(beam_ds) -> bool:
    """
    True si las posiciones de láminas cambian entre control points.
    Sirve para separar arco conformado (ArcDynamic) de VMAT.
    """
    seen = None
    for cp in getattr(beam_ds, "ControlPointSequence", []):
        for pos in getattr(cp, "BeamLimitingDevicePositionSequence", []):
            if str(getattr(pos, "RTBeamLimitingDeviceType", "")).upper() not in _MLC_DEVICE_TYPES:
                continue
            leaves = tuple(float(v) for v in pos.LeafJawPositions)
            if seen is None:
                seen = leaves
            elif leaves != seen:
                return True
    return False


def infer_mlc_plan_type(beam_ds) -> MLCPlanType:
    """
    Heurística a partir de tags del RTPLAN:
      - sin MLC                          → NotDefined
      - BeamType STATIC                  → Static
      - DYNAMIC + gantry rotando + MLC   → VMAT (ArcDynamic si el MLC no se mueve)
      - DYNAMIC sin rotación             → DoseDynamic (sliding window / IMRT)
    """
    if not _beam_has_mlc(beam_ds):
        return MLCPlanType.NOT_DEFINED

    beam_type = str(getattr(beam_ds, "BeamType", "") or "").upper()
    if beam_type == "STATIC":
        return MLCPlanType.STATIC

    if _beam_rotates(beam_ds):
        return MLCPlanType.VMAT if _mlc_moves(beam_ds) else MLCPlanType.ARC_DYNAMIC

    return MLCPlanType.DOSE_DYNAMIC


def extract_beams_from_rtplan(ds_plan) -> List[BeamInfo]:
    """
    Extrae los beams de tratamiento de un RTPLAN (pydicom Dataset).

    Los campos de setup / imagen (TreatmentDeliveryType == "SETUP")
    se saltan: sólo devolvemos beams clínicos.
    """
    beams: List[BeamInfo] = []

    for beam_ds in getattr(ds_plan, "BeamSequence", []):
        delivery = str(getattr(beam_ds, "TreatmentDeliveryType", "TREATMENT") or "").upper()
        if delivery == "SETUP":
            continue

        beam_number = int(getattr(beam_ds, "BeamNumber", len(beams) + 1))
        beam_name = str(getattr(beam_ds, "BeamName", f"Beam_{beam_number}"))

        nominal_energy = None
        cps = getattr(beam_ds, "ControlPointSequence", None)
        if cps and hasattr(cps[0], "NominalBeamEnergy"):
            nominal_energy = cps[0].NominalBeamEnergy

        energy_mode = energy_mode_display_name(
            nominal_energy, getattr(beam_ds, "RadiationType", None)
        )
        technique = Technique(id="ARC" if _beam_rotates(beam_ds) else "STATIC")

        beams.append(
            BeamInfo(
                id=beam_name,
                energy_mode_display_name=energy_mode,
                mlc_plan_type=infer_mlc_plan_type(beam_ds),
                technique=technique,
                metadata={"beam_number": beam_number},
            )
        )

    return beams


def extract_num_fractions(ds_plan) -> Optional[int]:
    """
    NumberOfFractionsPlanned del primer FractionGroup.
    None si no viene o no es un entero positivo.
    """
    groups = getattr(ds_plan, "FractionGroupSequence", None)
    if not groups:
        return None
    try:
        num_fx = int(getattr(groups[0], "NumberOfFractionsPlanned", 0))
    except (TypeError, ValueError):
        return None
    return num_fx if num_fx > 0 else None


def build_structures(
    masks: Dict[str, np.ndarray],
    types: Dict[str, str],
    spacing_zyx: Tuple[float, float, float],
) -> List[StructureInfo]:
    """
    Convierte {nombre: mask[z,y,x]} en StructureInfo con volumen en cc.
    Las ROIs declaradas en el RTSTRUCT pero sin máscara quedan como
    estructuras vacías (volumen 0).
    """
    structures: List[StructureInfo] = []
    for name in sorted(set(masks) | set(types)):
        mask = masks.get(name)
        volume_cc = _volume_cc(mask, spacing_zyx) if mask is not None else 0.0
        structures.append(
            StructureInfo(
                id=name,
                dicom_type=types.get(name, ""),
                mask=mask.astype(bool) if mask is not None else None,
                volume_cc=float(volume_cc),
            )
        )
    return structures


def build_plan_setup_from_dicom(
    plan_id: str,
    ct_folder: Optional[str] = None,
    rtstruct_path: Optional[str] = None,
    rtplan_path: Optional[str] = None,
) -> PlanSetup:
    """
    Construye un PlanSetup a partir de:
      - CT (folder con serie DICOM)      → imagen
      - RTSTRUCT (requiere el CT)        → structure set
      - RTPLAN                           → beams y fracciones

    Cualquiera de las partes puede faltar; el asserter reportará después
    NotApplicable para lo que no esté.
    """
    image: Optional[ImageInfo] = None
    structure_set: Optional[StructureSet] = None
    beams: Optional[List[BeamInfo]] = None
    num_fx: Optional[int] = None

    # 1) CT
    if ct_folder is not None:
        _, shape, spacing_sitk, origin, series_id = load_ct_series(ct_folder)
        image = ImageInfo(id=series_id, shape=shape, spacing_mm=spacing_sitk, origin_mm=origin)
        logger.info("CT cargado: %s shape=%s", ct_folder, shape)

    # 2) Estructuras
    if rtstruct_path is not None:
        if ct_folder is None or image is None:
            raise ValueError("El RTSTRUCT necesita la serie CT (--ct) para rasterizar las ROIs")
        sx, sy, sz = image.spacing_mm
        masks = load_rtstruct_masks(rtstruct_path, ct_folder)
        types = load_rtstruct_types(rtstruct_path)
        structure_set = StructureSet(
            id=plan_id,
            structures=build_structures(masks, types, (sz, sy, sx)),
            image=image,
        )
        logger.info("RTSTRUCT cargado: %s (%d estructuras)", rtstruct_path, len(structure_set.structures))

    # 3) Plan
    if rtplan_path is not None:
        ds_plan = load_rtplan(rtplan_path)
        beams = extract_beams_from_rtplan(ds_plan)
        num_fx = extract_num_fractions(ds_plan)
        logger.info(
            "RTPLAN cargado: %s (Label=%s, beams=%d, fx=%s)",
            rtplan_path, getattr(ds_plan, "RTPlanLabel", "N/A"), len(beams), num_fx,
        )

    return PlanSetup(
        id=plan_id,
        structure_set=structure_set,
        beams=beams,
        num_fractions=num_fx,
        image=image,
    )
