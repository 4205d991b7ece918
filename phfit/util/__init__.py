r"""
.. currentmodule: phfit.util

===============================================================================
Errors and warnings
===============================================================================

.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    exceptions.PhaseTypeError
    exceptions.DomainError
    exceptions.NumericalError
    exceptions.NotConvergedWarning
    exceptions.LikelihoodDecreaseWarning

===============================================================================
Progress reporting
===============================================================================

.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    callbacks.LikelihoodProgressCallback
"""
from . import exceptions
from . import types
from . import callbacks
from .exceptions import PhaseTypeError, DomainError, NumericalError, NotConvergedWarning, \
    LikelihoodDecreaseWarning
