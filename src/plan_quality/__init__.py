# src/plan_quality/__init__.py

"""
Paquete principal de asserts de calidad de plan.

La cadena de asserts vive en `plan_quality.asserter`.
El motor que corre cadenas definidas en config está en `plan_quality.engine`.
"""

from .asserter import PQAsserter  # noqa: F401
from .result import ConstraintResult, ResultType  # noqa: F401
