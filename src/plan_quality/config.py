from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, TypedDict

from plan_quality.config_overrides import (
    load_overrides,
    apply_overrides_to_configs,
)
from plan_quality.result import ResultType


def _normalize_key(key: Optional[str]) -> str:
    """
    Normaliza claves de perfil/prioridad a algo tipo 'BASIC' o 'DEFAULT'.

    - None o cadena vacía → 'DEFAULT'
    - strip() + mayúsculas
    """
    return (key or "DEFAULT").strip().upper()


# ============================================================
# 1) TEXTOS DEL ASSERTER
#    Plantillas str.format() para los mensajes de los checks
#    integrados. Un check que pasa no lleva mensaje.
# ============================================================

ASSERTER_TEXTS: Dict[str, str] = {
    # Asserts genéricos (predicado que lanza excepción)
    "EXCEPTION_SUFFIX": " => Exception thrown : {error}",

    # Fracciones / imagen / structure set / tipo de plan
    "INVALID_FRACTION_NUM": "Not valid fraction number",
    "NO_IMAGE": "No image",
    "NO_STRUCTURE_SET_HAS": "No structure set.",
    "NO_STRUCTURE_SET": "No structure set",
    "NOT_PLAN_SETUP": "Must be plan setup only",

    # Modalidad (sufijo del energy mode)
    "NO_ELECTRON_FIELDS": "Doesn't contain electron fields",
    "NO_PHOTON_FIELDS": "Doesn't contain photon fields",
    "NO_PROTON_FIELDS": "Doesn't contain proton fields",

    # Estructuras por id / tipo DICOM
    "MISSING_STRUCTURE_ID": "Missing {id}, or {id} is empty",
    "MISSING_STRUCTURE_TYPE": "Missing type {dicom_type}, or {dicom_type} structure is empty",
    "NONE_OF_STRUCTURES": "Does not contain one: {candidates}, or all are empty",

    # Beams por MLCPlanType
    "NO_BEAMS": "Does not contain any beams",
    "BEAM_WRONG_MLC_TYPE": "Beam {beam_id} is not of type {mlc_type}",
    "NO_BEAM_OF_MLC_TYPE": "No beam is of type {mlc_type}",
}


def get_asserter_texts(
    use_overrides: bool = True,
    overrides_path: str | Path | None = None,
) -> Dict[str, str]:
    """
    Devuelve una copia de ASSERTER_TEXTS con los overrides JSON aplicados
    (si use_overrides=True). No modifica el dict base.
    """
    texts = copy.deepcopy(ASSERTER_TEXTS)
    if use_overrides:
        overrides = load_overrides(overrides_path)
        apply_overrides_to_configs(texts, {}, overrides)
    return texts


# ============================================================
# 2) PRIORIDADES → SEVERIDAD DEL FALLO
# ============================================================

PRIORITY_RESULT_TYPES: Dict[str, ResultType] = {
    "DEFAULT": ResultType.NOT_APPLICABLE,
    "CRITICAL": ResultType.ACTION_LEVEL_3,
    "MID": ResultType.ACTION_LEVEL_2,
    "LOW": ResultType.ACTION_LEVEL_1,
}


def get_priority_result_type(priority: Optional[str]) -> ResultType:
    """
    'critical' → ACTION_LEVEL_3, 'mid' → ACTION_LEVEL_2, 'low' → ACTION_LEVEL_1,
    None / 'default' → NOT_APPLICABLE.
    Lanza KeyError si la prioridad no existe.
    """
    key = _normalize_key(priority)
    if key not in PRIORITY_RESULT_TYPES:
        raise KeyError(f"Prioridad desconocida: {priority!r}")
    return PRIORITY_RESULT_TYPES[key]


# ============================================================
# 3) PERFILES DE CADENA
#
# Cada perfil es una lista ordenada de pasos:
#   - check: nombre del check (ver plan_quality.engine.CHECK_REGISTRY)
#   - args:  argumentos posicionales extra (tras el planning item)
#
# OJO: el orden importa, el cumulative result es el primer fallo.
# ============================================================

class ChainStep(TypedDict, total=False):
    check: str
    args: List[Any]


CHAIN_PROFILES: Dict[str, List[ChainStep]] = {
    # Mínimo para cualquier plan
    "BASIC": [
        {"check": "has_image"},
        {"check": "has_structure_set"},
        {"check": "contains_valid_fraction_num"},
    ],
    # Plan de fotones VMAT con BODY y al menos un PTV
    "PHOTON_VMAT": [
        {"check": "is_plan_setup"},
        {"check": "has_image"},
        {"check": "has_structure_set"},
        {"check": "contains_valid_fraction_num"},
        {"check": "contains_one_or_more_photon_beams"},
        {"check": "contains_treatment_beams_by_mlc_plan_type", "args": ["VMAT"]},
        {"check": "contains_non_empty_structures_by_dicom_type", "args": ["EXTERNAL"]},
        {"check": "contains_one_or_more_non_empty_structures_by_dicom_type", "args": ["PTV"]},
    ],
    # Plan de electrones (no necesita MLC)
    "ELECTRON": [
        {"check": "is_plan_setup"},
        {"check": "has_image"},
        {"check": "contains_valid_fraction_num"},
        {"check": "contains_one_or_more_electron_beams"},
    ],
}


def get_chain_profile(
    profile: Optional[str] = None,
    use_overrides: bool = True,
    overrides_path: str | Path | None = None,
) -> List[ChainStep]:
    """
    Devuelve (copia de) los pasos del perfil pedido. None → 'BASIC'.
    Lanza KeyError si el perfil no existe ni en la config base ni en
    los overrides.
    """
    key = _normalize_key(profile or "BASIC")
    chains = list_chain_profiles(use_overrides=use_overrides, overrides_path=overrides_path)
    if key not in chains:
        raise KeyError(f"Perfil de cadena desconocido: {profile!r}")
    return chains[key]


def list_chain_profiles(
    use_overrides: bool = True,
    overrides_path: str | Path | None = None,
) -> Dict[str, List[ChainStep]]:
    chains = copy.deepcopy(CHAIN_PROFILES)
    if use_overrides:
        overrides = load_overrides(overrides_path)
        apply_overrides_to_configs({}, chains, overrides)
    return chains


# ============================================================
# 4) LOGGING CONFIG
# ============================================================

# Esta sección NO configura el logging de Python por sí sola,
# solo define un dict estilo logging.config.dictConfig que la
# aplicación (app.cli) pasa a logging.config.dictConfig(LOGGING_CONFIG).

LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "root": {
        "level": "WARNING",
        "handlers": ["console"],
    },
    "formatters": {
        "simple": {
            "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
            "level": "DEBUG",
        },
    },
    "loggers": {
        # Logger principal de los asserts
        "plan_quality": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        # Carga de planning items desde DICOM
        "planning": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
    },
}


def get_logging_config(level: Optional[str] = None) -> Dict[str, Any]:
    """
    Devuelve (copia de) LOGGING_CONFIG lista para dictConfig.
    Si se pasa level (p.ej. "DEBUG"), se aplica a los loggers del proyecto.
    """
    cfg = copy.deepcopy(LOGGING_CONFIG)
    if level is not None:
        for logger_cfg in cfg["loggers"].values():
            logger_cfg["level"] = level.upper()
    return cfg


def get_pq_logger(name: str = "plan_quality") -> logging.Logger:
    """
    Helper simple para obtener un logger consistente en todo el proyecto.
    No llama a dictConfig; se asume que la app lo hará en el arranque.
    """
    return logging.getLogger(name)
