r"""
.. currentmodule: phfit.numeric

===============================================================================
Truncated Poisson probabilities
===============================================================================

.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    rightbound
    pmf
    RIGHTBOUND_CEILING
"""
from ._poisson import rightbound, pmf, RIGHTBOUND_CEILING
