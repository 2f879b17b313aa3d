# src/planning/naming.py

from __future__ import annotations

import re
from typing import Dict, Optional

# ============================================
# 1) Ids de estructuras
# ============================================

def normalize_structure_id(raw: Optional[str]) -> str:
    """
    Normalización mínima para comparar ids de estructuras:
      - strip + mayúsculas
      - espacios repetidos colapsados a uno
    No quita sufijos (PTV_1 y PTV siguen siendo distintos).
    """
    n = (raw or "").strip().upper()
    return re.sub(r"\s+", " ", n)


# ============================================
# 2) Modalidad a partir del energy mode
# ============================================

# Sufijo del EnergyModeDisplayName → modalidad
_ENERGY_SUFFIX_MODALITY: Dict[str, str] = {
    "E": "ELECTRON",
    "X": "PHOTON",
    "P": "PROTON",
}

# RadiationType (RTPLAN) → sufijo para construir el display name
_RADIATION_TYPE_SUFFIX: Dict[str, str] = {
    "PHOTON": "X",
    "ELECTRON": "E",
    "PROTON": "P",
}


def modality_from_energy_mode(energy_mode: Optional[str]) -> Optional[str]:
    """
    "6X" → "PHOTON", "9E" → "ELECTRON", "160P" → "PROTON".
    Devuelve None si el sufijo no es reconocible.

    OJO: el sufijo se compara tal cual (sensible a mayúsculas), igual
    que el convenio del TPS: "6x" no cuenta como fotones.
    """
    if not energy_mode:
        return None
    return _ENERGY_SUFFIX_MODALITY.get(energy_mode.strip()[-1:])


def energy_mode_display_name(nominal_energy, radiation_type: Optional[str]) -> str:
    """
    Construye el display name estilo TPS a partir de tags RTPLAN:
        (6.0, "PHOTON") → "6X"
        (9, "ELECTRON") → "9E"
    Si falta la energía devuelve sólo el sufijo; si la modalidad no es
    conocida devuelve sólo la energía.
    """
    suffix = _RADIATION_TYPE_SUFFIX.get((radiation_type or "").strip().upper(), "")

    if nominal_energy is None:
        return suffix
    try:
        e = float(nominal_energy)
        energy = str(int(e)) if e.is_integer() else f"{e:g}"
    except (TypeError, ValueError):
        energy = str(nominal_energy).strip()

    return f"{energy}{suffix}"
