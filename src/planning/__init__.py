# src/planning/__init__.py

"""
Modelo mínimo de planning items (plan individual / suma de planes).

Los accesores que usa el asserter viven en `planning.items`.
La construcción desde DICOM está en `planning.build_item`.
"""
