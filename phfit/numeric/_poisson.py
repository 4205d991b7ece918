r"""Truncated Poisson probabilities used by the uniformization routines.

For a Poisson random variable :math:`N` with mean :math:`\lambda`, :func:`rightbound` yields the truncation point
beyond which at most ``eps`` of the probability mass is lost, and :func:`pmf` fills a buffer with the probabilities
between a left and a right truncation point.
"""

import numpy as np
from scipy.special import gammaln, pdtrc

from ..util.exceptions import DomainError, NumericalError

#: Largest admissible truncation point. A larger bound means that eps is too small for the given time horizon.
RIGHTBOUND_CEILING = 2 ** 24


def _check_mean(mean):
    if not np.isfinite(mean) or mean < 0:
        raise DomainError(f"The Poisson mean must be a non-negative finite number, but was {mean}.")


def rightbound(mean: float, eps: float = 1e-8) -> int:
    r""" Computes the right truncation point of a Poisson distribution, i.e., the smallest integer :math:`r` with

    .. math::

        P(N > r) = \sum_{k > r} e^{-\lambda}\frac{\lambda^k}{k!} \leq \varepsilon.

    The search starts at the mode :math:`\lfloor\lambda\rfloor` and extends outwards with doubling steps, followed
    by a bisection on the (monotone) tail probability.

    Parameters
    ----------
    mean : float
        The Poisson mean :math:`\lambda \geq 0`.
    eps : float, default=1e-8
        Tolerance on the neglected tail mass, must lie in (0, 1).

    Returns
    -------
    right : int
        The truncation point. Zero if the mean vanishes.

    Raises
    ------
    DomainError
        If the mean is negative or not finite or if eps does not lie in (0, 1).
    NumericalError
        If the truncation point exceeds :data:`RIGHTBOUND_CEILING`.
    """
    _check_mean(mean)
    if not 0 < eps < 1:
        raise DomainError(f"The tolerance eps must lie in (0, 1), but was {eps}.")
    if mean == 0:
        return 0

    mode = int(np.floor(mean))
    if mode > RIGHTBOUND_CEILING:
        raise NumericalError(f"The Poisson mean {mean} exceeds the truncation ceiling {RIGHTBOUND_CEILING}.")

    # invariant: tail(lo) > eps >= tail(hi), lo = -1 standing in for a tail of one
    if pdtrc(mode, mean) > eps:
        lo, step = mode, 1
        hi = mode + step
        while pdtrc(hi, mean) > eps:
            lo = hi
            step *= 2
            hi = mode + step
            if lo > RIGHTBOUND_CEILING:
                raise NumericalError(f"The truncation point for mean {mean} and eps {eps} exceeds the "
                                     f"ceiling {RIGHTBOUND_CEILING}.")
    else:
        lo, hi = -1, mode
    while hi - lo > 1:
        mid = (lo + hi) // 2
        if pdtrc(mid, mean) > eps:
            lo = mid
        else:
            hi = mid
    if hi > RIGHTBOUND_CEILING:
        raise NumericalError(f"The truncation point {hi} for mean {mean} and eps {eps} exceeds the "
                             f"ceiling {RIGHTBOUND_CEILING}.")
    return int(hi)


def pmf(mean: float, left: int, right: int, prob: np.ndarray) -> float:
    r""" Fills ``prob[left:right+1]`` with Poisson probabilities and returns their sum.

    The probability at the mode (clipped to ``[left, right]``) is seeded in log space, the remaining entries follow
    from the ratio recurrences

    .. math::

        p_{k+1} = p_k \frac{\lambda}{k+1},\qquad p_{k-1} = p_k \frac{k}{\lambda},

    which are evaluated as cumulative products in both directions. This is stable for means in the thousands.

    Parameters
    ----------
    mean : float
        The Poisson mean :math:`\lambda \geq 0`.
    left : int
        Left truncation point (inclusive).
    right : int
        Right truncation point (inclusive).
    prob : ndarray
        Output buffer of length at least ``right + 1``. Entries outside of ``[left, right]`` are not touched.

    Returns
    -------
    weight : float
        The total probability mass captured in ``prob[left:right+1]``.

    Raises
    ------
    DomainError
        If the mean is negative, the truncation points are invalid or the buffer is too short.
    NumericalError
        If the captured mass vanishes or is not finite.
    """
    _check_mean(mean)
    if left < 0 or right < left:
        raise DomainError(f"Invalid truncation range [{left}, {right}].")
    if len(prob) < right + 1:
        raise DomainError(f"Buffer of length {len(prob)} cannot hold index {right}.")

    if mean == 0:
        prob[left:right + 1] = 0.
        if left == 0:
            prob[0] = 1.
    else:
        mode = min(max(int(mean), left), right)
        prob[mode] = np.exp(-mean + mode * np.log(mean) - gammaln(mode + 1.))
        if mode < right:
            prob[mode + 1:right + 1] = prob[mode] * np.cumprod(mean / np.arange(mode + 1, right + 1))
        if mode > left:
            prob[left:mode] = prob[mode] * np.cumprod(np.arange(mode, left, -1) / mean)[::-1]

    weight = float(np.sum(prob[left:right + 1]))
    if not np.isfinite(weight) or weight <= 0:
        raise NumericalError(f"Poisson weights for mean {mean} on [{left}, {right}] captured no mass ({weight}).")
    return weight
