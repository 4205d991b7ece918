"""
Exceptions and warnings raised by the phase-type routines.
"""


class PhaseTypeError(ValueError):
    r"""
    Common base of all errors raised while evaluating or fitting a phase-type distribution.
    """


class DomainError(PhaseTypeError):
    r"""
    This error indicates that an argument lies outside of its admissible domain, e.g., a non-positive rate,
    a probability outside of [0, 1], a uniformization factor not larger than one, or malformed fault data.
    """


class NumericalError(PhaseTypeError, ArithmeticError):
    r"""
    This error indicates that a numerical procedure produced a degenerate or non-finite intermediate value,
    e.g., a vanishing expected sojourn time, a non-positive likelihood contribution, or a Poisson truncation
    bound beyond the safety ceiling.
    """


class InputFormatError(ValueError):
    pass


class NotConvergedWarning(RuntimeWarning):
    r"""
    This warning indicates that some iterative procedure has not
    converged or reached the maximum number of iterations implemented
    as a safe guard to prevent arbitrary many iterations in loops with
    a conditional termination criterion.
    """


class LikelihoodDecreaseWarning(RuntimeWarning):
    r"""
    This warning indicates that an EM iteration decreased the log-likelihood by more than numerical tolerance.
    """
