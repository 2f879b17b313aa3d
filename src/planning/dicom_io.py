# src/planning/dicom_io.py

import logging
import os

import SimpleITK as sitk
import numpy as np
import pydicom
import rt_utils

logger = logging.getLogger(__name__)


def load_ct_series(ct_folder):
    """
    Carga una serie de CT DICOM como un SimpleITK Image.
    Devuelve: image (SimpleITK), shape [z,y,x], spacing (sx,sy,sz), origin, series_id.
    """
    if not os.path.isdir(ct_folder):
        raise FileNotFoundError(f"No se encontró carpeta CT: {ct_folder}")

    reader = sitk.ImageSeriesReader()
    series_ids = reader.GetGDCMSeriesIDs(ct_folder)
    if not series_ids:
        raise ValueError(f"No se encontraron series en {ct_folder}")

    # Tomamos la primera serie
    series_file_names = reader.GetGDCMSeriesFileNames(ct_folder, series_ids[0])
    reader.SetFileNames(series_file_names)

    image = reader.Execute()
    size_xyz = image.GetSize()
    shape = (int(size_xyz[2]), int(size_xyz[1]), int(size_xyz[0]))

    return image, shape, image.GetSpacing(), image.GetOrigin(), series_ids[0]


def load_rtstruct_masks(rtstruct_path, ct_folder):
    """
    Carga RTSTRUCT y devuelve un dict: {nombre_estructura: mask [z, y, x]}.
    Las ROIs sin contornos (o que rt_utils no puede rasterizar) se omiten.
    """
    if not os.path.exists(rtstruct_path):
        raise FileNotFoundError(f"No se encontró RTSTRUCT: {rtstruct_path}")

    rt = rt_utils.RTStructBuilder.create_from(
        dicom_series_path=ct_folder,
        rt_struct_path=rtstruct_path,
    )

    masks = {}
    for roi_name in rt.get_roi_names():
        try:
            mask = rt.get_roi_mask_by_name(roi_name)  # viene como [y, x, z]
        except Exception as e:
            logger.info("ROI %s sin máscara, se omite (%s)", roi_name, e)
            continue

        if mask is None:
            continue

        # rt_utils da [y, x, z] → [z, y, x]
        masks[roi_name] = np.moveaxis(mask, -1, 0).astype(np.uint8)

    return masks


def load_rtstruct_types(rtstruct_path):
    """
    Lee del RTSTRUCT el RTROIInterpretedType de cada ROI.
    Devuelve {nombre_roi: tipo} (tipo "" si no viene informado).
    """
    ds = pydicom.dcmread(rtstruct_path)

    names = {}
    for roi in getattr(ds, "StructureSetROISequence", []):
        names[int(roi.ROINumber)] = str(getattr(roi, "ROIName", ""))

    types = {name: "" for name in names.values()}
    for obs in getattr(ds, "RTROIObservationsSequence", []):
        ref = int(getattr(obs, "ReferencedROINumber", -1))
        if ref in names:
            types[names[ref]] = str(getattr(obs, "RTROIInterpretedType", "") or "").upper()

    return types


def load_rtplan(rtplan_path):
    if not os.path.exists(rtplan_path):
        raise FileNotFoundError(f"No se encontró RTPLAN: {rtplan_path}")
    return pydicom.dcmread(rtplan_path)
