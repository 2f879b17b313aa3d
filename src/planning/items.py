# src/planning/items.py

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from xml.sax.saxutils import quoteattr

import numpy as np

from planning.context import XContext
from planning.naming import normalize_structure_id


# ---------------------------------------------------------
# Tipos auxiliares
# ---------------------------------------------------------

class MLCPlanType(Enum):
    """
    Tipo de entrega/colimación de un beam (equivalente al MLCPlanType
    del sistema de planificación).
    """
    STATIC = "Static"
    DOSE_DYNAMIC = "DoseDynamic"
    ARC_DYNAMIC = "ArcDynamic"
    VMAT = "VMAT"
    NOT_DEFINED = "NotDefined"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, raw: "str | MLCPlanType") -> "MLCPlanType":
        """
        Acepta el enum, su valor ("VMAT", "DoseDynamic") o su nombre
        ("DOSE_DYNAMIC"). Lanza ValueError si no se reconoce.
        """
        if isinstance(raw, cls):
            return raw
        key = str(raw).strip()
        for member in cls:
            if key.upper() in (member.value.upper(), member.name):
                return member
        raise ValueError(f"MLCPlanType desconocido: {raw!r}")


@dataclass
class Technique:
    """
    Técnica de tratamiento de un beam (p.ej. "STATIC", "ARC").

    write_xml es la única escritura del modelo: se ejecuta siempre en el
    hilo del contexto de cliente (XContext), nunca en el hilo que llama.
    """
    id: str

    def write_xml(self, writer) -> None:
        xml = f"<Technique Id={quoteattr(self.id)}/>"
        XContext.instance().invoke(lambda: writer.write(xml))


# ---------------------------------------------------------
# Imagen, estructuras y beams
# ---------------------------------------------------------

@dataclass
class ImageInfo:
    """
    Imagen de planificación (CT) asociada al plan.

    Attributes
    ----------
    id : str
        Identificador de la serie / imagen.
    shape : (int, int, int)
        Dimensiones [z, y, x].
    spacing_mm : (float, float, float)
        Spacing (sx, sy, sz) en mm, convenio SimpleITK.
    origin_mm : (float, float, float)
        Origen en coordenadas de paciente (x, y, z).
    """
    id: str
    shape: Tuple[int, int, int] = (0, 0, 0)
    spacing_mm: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    origin_mm: Tuple[float, float, float] = (0.0, 0.0, 0.0)


@dataclass
class StructureInfo:
    """
    Estructura del structure set.

    - id: nombre tal cual viene del RTSTRUCT
    - dicom_type: RTROIInterpretedType ("PTV", "ORGAN", "EXTERNAL", ...)
    - mask: máscara binaria [z, y, x] (opcional)
    - volume_cc: volumen en cc; si no se da se calcula desde la máscara
    """
    id: str
    dicom_type: str = ""
    mask: Optional[np.ndarray] = None
    volume_cc: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        if self.mask is not None:
            return not bool(np.any(self.mask))
        return not self.volume_cc


@dataclass
class BeamInfo:
    """
    Beam/campo de tratamiento.

    energy_mode_display_name sigue el convenio del TPS: "6X" (fotones),
    "9E" (electrones), "160P" (protones).
    """
    id: str
    energy_mode_display_name: str = ""
    mlc_plan_type: MLCPlanType = MLCPlanType.NOT_DEFINED
    technique: Optional[Technique] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StructureSet:
    id: str
    structures: List[StructureInfo] = field(default_factory=list)
    image: Optional[ImageInfo] = None


# ---------------------------------------------------------
# Planning items (plan individual / suma de planes)
# ---------------------------------------------------------

class PlanningItem(ABC):
    """
    Interfaz mínima que el asserter necesita del sistema de planificación.

    El asserter sólo lee a través de estos accesores; nunca modifica
    el planning item.
    """

    id: str

    @abstractmethod
    def get_image(self) -> Optional[ImageInfo]:
        ...

    @abstractmethod
    def get_structures(self) -> Optional[List[StructureInfo]]:
        """None si el item no tiene structure set."""
        ...

    @abstractmethod
    def get_beams(self) -> Optional[List[BeamInfo]]:
        ...

    @abstractmethod
    def number_of_fractions(self) -> Optional[int]:
        ...

    def contains_structure(self, structure_id: str) -> bool:
        """
        True si existe una estructura NO vacía con ese id
        (comparación insensible a mayúsculas/espacios).
        """
        structures = self.get_structures()
        if not structures:
            return False
        wanted = normalize_structure_id(structure_id)
        return any(
            normalize_structure_id(s.id) == wanted and not s.is_empty
            for s in structures
        )


@dataclass
class PlanSetup(PlanningItem):
    id: str
    structure_set: Optional[StructureSet] = None
    beams: Optional[List[BeamInfo]] = None
    num_fractions: Optional[int] = None
    image: Optional[ImageInfo] = None

    def get_image(self) -> Optional[ImageInfo]:
        if self.image is not None:
            return self.image
        if self.structure_set is not None:
            return self.structure_set.image
        return None

    def get_structures(self) -> Optional[List[StructureInfo]]:
        if self.structure_set is None:
            return None
        return self.structure_set.structures

    def get_beams(self) -> Optional[List[BeamInfo]]:
        return self.beams

    def number_of_fractions(self) -> Optional[int]:
        return self.num_fractions


@dataclass
class PlanSum(PlanningItem):
    """
    Suma de planes. Si no tiene structure set propio usa el del
    primer plan que lo tenga.
    """
    id: str
    plan_setups: List[PlanSetup] = field(default_factory=list)
    structure_set: Optional[StructureSet] = None

    def get_image(self) -> Optional[ImageInfo]:
        for ps in self.plan_setups:
            img = ps.get_image()
            if img is not None:
                return img
        if self.structure_set is not None:
            return self.structure_set.image
        return None

    def get_structures(self) -> Optional[List[StructureInfo]]:
        if self.structure_set is not None:
            return self.structure_set.structures
        for ps in self.plan_setups:
            structures = ps.get_structures()
            if structures is not None:
                return structures
        return None

    def get_beams(self) -> Optional[List[BeamInfo]]:
        beam_lists = [ps.get_beams() for ps in self.plan_setups]
        if all(b is None for b in beam_lists):
            return None
        beams: List[BeamInfo] = []
        for bl in beam_lists:
            beams.extend(bl or [])
        return beams

    def number_of_fractions(self) -> Optional[int]:
        # Fracciones desconocidas no suman: una suma siempre da un número
        return sum(ps.num_fractions for ps in self.plan_setups if ps.num_fractions is not None)
