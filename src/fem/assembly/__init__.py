"""Weak-form assembly of the block saddle-point system."""

from .block_system import BlockLinearSystem
from .weak_form import ConvectiveForm, Linearization, WeakFormAssembler

__all__ = [
    "BlockLinearSystem",
    "ConvectiveForm",
    "Linearization",
    "WeakFormAssembler",
]
