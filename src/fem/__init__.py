"""Finite element discretization: Lagrange triangles, quadrature, dof numbering, assembly.

Package layout:
- quadrature, lagrange, geometry: reference elements and cell maps
- dofhandler: mixed P_ku/P_kp numbering and worker ownership
- boundary_conditions: Dirichlet/Neumann registry and ConstraintSet
- assembly: WeakFormAssembler and BlockLinearSystem
"""

from .dofhandler import DofHandler, DofPartition
from .boundary_conditions import (
    BoundaryConditionRegistry,
    ConstraintMode,
    ConstraintSet,
    InletProfile,
)
from .assembly import BlockLinearSystem, ConvectiveForm, Linearization, WeakFormAssembler

__all__ = [
    "DofHandler",
    "DofPartition",
    "BoundaryConditionRegistry",
    "ConstraintMode",
    "ConstraintSet",
    "InletProfile",
    "BlockLinearSystem",
    "ConvectiveForm",
    "Linearization",
    "WeakFormAssembler",
]
