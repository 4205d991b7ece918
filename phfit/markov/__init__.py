r"""
.. currentmodule: phfit.markov

CF1 phase-type distributions
----------------------------
.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    CF1Model
    pdf
    cdf
    sample
    moment
    sojourn
    normalize
    cf1_sort
    cf1_swap

Uniformization
--------------
.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    CF1Matrix
    cf1_matrix
    unif
    mexpv
    mexp_conv

Software reliability models
---------------------------
.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    FaultData
    CF1SRM
    MaximumLikelihoodCF1SRM
    fit_cf1srm
    cf1emstep
    emstep
    EMStepResult
"""
import logging

from ._uniformization import CF1Matrix, cf1_matrix, unif, mexpv, mexp_conv
from ._cf1 import CF1Model, pdf, cdf, sample, moment, sojourn, normalize, cf1_sort, cf1_swap
from ._fault_data import FaultData
from ._em import cf1emstep, emstep, EMStepResult
from ._srm import CF1SRM, MaximumLikelihoodCF1SRM, fit_cf1srm

# set up null handler
logging.getLogger(__name__).addHandler(logging.NullHandler())
