"""
plan_quality.config_overrides
-----------------------------

Capa muy ligera para manejar overrides de configuración sin tocar los
diccionarios base definidos en plan_quality.config.

Schema del JSON (pq_overrides.json):

{
  "texts": {
    "NO_IMAGE": "No CT image",
    "MISSING_STRUCTURE_ID": "Missing {id}"
  },
  "chains": {
    "MY_CLINIC": [
      {"check": "has_structure_set"},
      {"check": "contains_non_empty_structures_by_id", "args": ["BODY"]}
    ]
  }
}
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Set
import json
import copy
import logging
import string

logger = logging.getLogger(__name__)

# Ruta por defecto (mismo directorio que plan_quality/config.py)
OVERRIDES_FILE = Path(__file__).resolve().parent / "pq_overrides.json"

DEFAULT_OVERRIDES: Dict[str, Any] = {
    "texts": {},
    "chains": {},
}


# ---------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------

def load_overrides(path: str | Path | None = None) -> Dict[str, Any]:
    """
    Lee el archivo de overrides (JSON) y devuelve un dict
    siempre con claves 'texts' y 'chains'.

    Si no existe o está roto, devuelve DEFAULT_OVERRIDES. Claves
    desconocidas se descartan.
    """
    p = Path(path) if path is not None else OVERRIDES_FILE

    if not p.exists():
        return copy.deepcopy(DEFAULT_OVERRIDES)

    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Overrides ilegibles en %s, se usan defaults (%s)", p, e)
        return copy.deepcopy(DEFAULT_OVERRIDES)

    if not isinstance(data, dict):
        logger.warning("Overrides en %s no son un objeto JSON, se usan defaults", p)
        return copy.deepcopy(DEFAULT_OVERRIDES)

    # Cada sección tiene que ser un objeto; si no, se ignora esa sección
    result = copy.deepcopy(DEFAULT_OVERRIDES)
    for section in result:
        value = data.get(section, {})
        if isinstance(value, dict):
            result[section] = value
        else:
            logger.warning("Sección %r de %s no es un objeto JSON, se ignora", section, p)
    return result


def save_overrides(overrides: Dict[str, Any], path: str | Path | None = None) -> None:
    """
    Guarda el dict de overrides en disco (sólo 'texts' y 'chains').
    """
    p = Path(path) if path is not None else OVERRIDES_FILE

    to_dump = {
        "texts": overrides.get("texts", {}),
        "chains": overrides.get("chains", {}),
    }

    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w", encoding="utf-8") as f:
        json.dump(to_dump, f, ensure_ascii=False, indent=2)


# ---------------------------------------------------------------------
# Validación de textos
# ---------------------------------------------------------------------

_FORMATTER = string.Formatter()


def _template_fields(template: str) -> Set[str]:
    """
    Campos {nombre} de una plantilla str.format.
    Lanza ValueError si la plantilla está mal formada ('{id', '}'...).
    Los campos con format spec ('{id:>5}') se devuelven tal cual para
    que no coincidan con los de la plantilla base.
    """
    fields: Set[str] = set()
    for _, field_name, format_spec, _ in _FORMATTER.parse(template):
        if field_name is None:
            continue
        fields.add(f"{field_name}:{format_spec}" if format_spec else field_name)
    return fields


def _text_override_ok(key: str, base: str, text: Any) -> bool:
    """
    Un override de texto se acepta si es str y sólo usa campos que la
    plantilla base ya rellena (puede omitir alguno, no inventar).
    """
    if not isinstance(text, str):
        logger.warning("Override de texto %s ignorado: no es un string (%r)", key, text)
        return False
    try:
        fields = _template_fields(text)
    except ValueError as e:
        logger.warning("Override de texto %s ignorado: plantilla mal formada (%s)", key, e)
        return False

    unknown = fields - _template_fields(base)
    if unknown:
        logger.warning(
            "Override de texto %s ignorado: campos %s no existen en %r",
            key, sorted(unknown), base,
        )
        return False
    return True


# ---------------------------------------------------------------------
# Aplicar overrides sobre dicts ya clonados
# ---------------------------------------------------------------------

def apply_overrides_to_configs(
    texts_cfg: Dict[str, str],
    chains_cfg: Dict[str, List[Dict[str, Any]]],
    overrides: Dict[str, Any],
) -> None:
    """
    Modifica IN PLACE los dicts texts_cfg y chains_cfg
    aplicando lo que venga en overrides.

    - texts_cfg:  ASSERTER_TEXTS clonado. Sólo claves existentes y
                  plantillas cuyos campos {..} estén en la base.
    - chains_cfg: CHAIN_PROFILES clonado (se pueden añadir perfiles nuevos).
                  La forma de cada paso la valida plan_quality.engine.
    """
    # ---- Textos ----
    for key, text in overrides.get("texts", {}).items():
        if key not in texts_cfg:
            continue
        if _text_override_ok(key, texts_cfg[key], text):
            texts_cfg[key] = text

    # ---- Cadenas ----
    for name, steps in overrides.get("chains", {}).items():
        if not isinstance(steps, list):
            logger.warning("Override de cadena %s ignorado: no es una lista de pasos", name)
            continue
        chains_cfg[str(name).strip().upper()] = steps
