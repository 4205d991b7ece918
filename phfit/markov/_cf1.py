import math
from typing import Optional, Tuple

import numpy as np
from sklearn.utils import check_random_state

from ._uniformization import cf1_matrix, unif, mexpv, mexp_conv
from ..base import Model
from ..numeric import rightbound, pmf
from ..util.exceptions import DomainError
from ..util.types import ensure_floating_array, ensure_probability_vector, ensure_rate_vector, ensure_positive_number


def cf1_swap(i: int, j: int, alpha: np.ndarray, rate: np.ndarray):
    r""" Exchanges the rates of the adjacent phases i < j in place without changing the represented distribution.

    With :math:`w = \lambda_j / \lambda_i` the identity :math:`\mathrm{Exp}(\lambda_j) \sim w\,\mathrm{Exp}(\lambda_i)
    + (1-w)\,\mathrm{Exp}(\lambda_j)*\mathrm{Exp}(\lambda_i)` moves the mass :math:`(1-w)\alpha_j` to phase i.
    Only valid for :math:`\lambda_j \leq \lambda_i`.
    """
    w = rate[j] / rate[i]
    alpha[i] += (1. - w) * alpha[j]
    alpha[j] *= w
    rate[i], rate[j] = rate[j], rate[i]


def cf1_sort(alpha: np.ndarray, rate: np.ndarray):
    r""" Brings a CF1 representation into canonical form in place, i.e., sorts the rates ascending while
    redistributing the initial probabilities so that the law of the absorption time is unchanged.
    Sorting is carried out by adjacent swaps (see :func:`cf1_swap`), therefore the operation is idempotent.

    Parameters
    ----------
    alpha : ndarray
        Initial probabilities, modified in place.
    rate : ndarray
        Exit rates, modified in place.

    Raises
    ------
    DomainError
        If a rate is not positive or the lengths differ.
    """
    if len(alpha) != len(rate):
        raise DomainError(f"Initial probabilities and rates differ in length ({len(alpha)} != {len(rate)}).")
    bad = np.flatnonzero(~np.isfinite(rate) | (rate <= 0))
    if bad.size > 0:
        raise DomainError(f"Rates must be positive and finite, but rate[{bad[0]}] = {rate[bad[0]]}.")
    for i in range(len(rate) - 1):
        if rate[i] > rate[i + 1]:
            for j in range(i + 1, 0, -1):
                if rate[j - 1] <= rate[j]:
                    break
                cf1_swap(j - 1, j, alpha, rate)


def normalize(alpha, rate) -> Tuple[np.ndarray, np.ndarray]:
    r""" Canonical form of a CF1 representation, see :func:`cf1_sort`. The inputs are not modified.

    Parameters
    ----------
    alpha : array_like
        Initial probabilities.
    rate : array_like
        Exit rates.

    Returns
    -------
    alpha : ndarray
        Initial probabilities in canonical form.
    rate : ndarray
        Ascending exit rates.
    """
    alpha = np.array(ensure_probability_vector(alpha), dtype=float)
    rate = np.array(ensure_rate_vector(rate, n=len(alpha)), dtype=float)
    cf1_sort(alpha, rate)
    return alpha, rate


def _propagate(t, alpha, rate, eps, ufactor, reduce):
    try:
        t = ensure_floating_array(t, ndim=1)
    except ValueError as e:
        raise DomainError(f"Invalid time points: {e}") from e
    bad = np.flatnonzero(~np.isfinite(t) | (t < 0))
    if bad.size > 0:
        raise DomainError(f"Time points must be non-negative and finite, but t[{bad[0]}] = {t[bad[0]]}.")
    alpha = ensure_probability_vector(alpha)
    rate = ensure_rate_vector(rate, n=len(alpha))
    result = np.empty(len(t))
    if len(t) == 0:
        return result

    # time points are visited in ascending order, the phase vector is carried over the increments
    order = np.argsort(t, kind='stable')
    dx = np.diff(t[order], prepend=0.)

    P = rate.copy()
    qv = unif(cf1_matrix, P, ufactor)
    prob = np.empty(rightbound(qv * dx.max(), eps) + 1)
    tmp = alpha.copy()
    xi = np.empty(len(alpha))
    for i, d in zip(order, dx):
        right = rightbound(qv * d, eps)
        weight = pmf(qv * d, 0, right, prob)
        mexpv(cf1_matrix, True, P, prob, right, weight, tmp, tmp, xi)
        result[i] = reduce(tmp, rate)
    return result


def pdf(t, alpha, rate, eps: float = 1e-8, ufactor: float = 1.01, log: bool = False) -> np.ndarray:
    r""" Probability density function of a CF1 distribution.

    Parameters
    ----------
    t : array_like
        Non-negative time points, in any order.
    alpha : array_like
        Initial probabilities.
    rate : array_like
        Exit rates.
    eps : float, default=1e-8
        Tolerance of the Poisson truncation.
    ufactor : float, default=1.01
        Uniformization factor.
    log : bool, default=False
        Whether to return the logarithm of the density.

    Returns
    -------
    values : ndarray
        Density at the time points, in the order of `t`.
    """
    result = _propagate(t, alpha, rate, eps, ufactor, lambda x, r: r[-1] * x[-1])
    if log:
        with np.errstate(divide='ignore'):
            return np.log(result)
    return result


def cdf(t, alpha, rate, eps: float = 1e-8, ufactor: float = 1.01, lower: bool = True,
        log: bool = False) -> np.ndarray:
    r""" Cumulative distribution function of a CF1 distribution.

    Parameters
    ----------
    t : array_like
        Non-negative time points, in any order.
    alpha : array_like
        Initial probabilities.
    rate : array_like
        Exit rates.
    eps : float, default=1e-8
        Tolerance of the Poisson truncation.
    ufactor : float, default=1.01
        Uniformization factor.
    lower : bool, default=True
        If True, yields :math:`P(T \leq t)`, otherwise the survival function :math:`P(T > t)`.
    log : bool, default=False
        Whether to return the logarithm, applied after the choice of `lower`.

    Returns
    -------
    values : ndarray
        Probabilities at the time points, in the order of `t`.
    """
    result = _propagate(t, alpha, rate, eps, ufactor, lambda x, r: np.sum(x))
    if lower:
        result = 1. - result
    if log:
        with np.errstate(divide='ignore'):
            return np.log(result)
    return result


def sample(n: int, alpha, rate, random_state=None) -> np.ndarray:
    r""" Draws samples of a CF1 distribution.

    The starting phases are assigned by splitting the samples with binomial draws along the ordered phases, each
    with the probability of the phase conditioned on not having started in any earlier phase. Every sample then
    accumulates an exponential sojourn in its starting phase and in each subsequent phase.

    Parameters
    ----------
    n : int
        Number of samples.
    alpha : array_like
        Initial probabilities.
    rate : array_like
        Exit rates.
    random_state : None or int or np.random.RandomState, optional, default=None
        Source of randomness.

    Returns
    -------
    samples : (n,) ndarray
        Independent samples of the absorption time.
    """
    if n < 0:
        raise DomainError(f"Number of samples must be non-negative, but was {n}.")
    alpha = ensure_probability_vector(alpha)
    rate = ensure_rate_vector(rate, n=len(alpha))
    random_state = check_random_state(random_state)

    res = np.zeros(n)
    y = 0
    prob = 1.
    for l in range(len(alpha)):
        if l == len(alpha) - 1 or prob <= 0:
            p = 1.
        else:
            p = min(max(alpha[l] / prob, 0.), 1.)
        y += random_state.binomial(n - y, p)
        prob -= alpha[l]
        res[:y] += random_state.exponential(1. / rate[l], size=y)
    # samples are grouped by starting phase, shuffle to make the order meaningless
    return random_state.permutation(res)


def sojourn(alpha, rate, f, b, t: float, eps: float = 1e-8, ufactor: float = 1.01) -> np.ndarray:
    r""" Convolution integrals :math:`\int_0^t (f e^{Qs})_i (e^{Q(t-s)} b)_j \,\mathrm{d}s` of a forward
    (row) vector `f` and a backward (column) vector `b` for :math:`j=i` and :math:`j=i+1`, see
    :func:`mexp_conv <phfit.markov.mexp_conv>`.

    Parameters
    ----------
    alpha : array_like
        Initial probabilities, only used for validation of the phase count.
    rate : array_like
        Exit rates.
    f : array_like
        Forward vector.
    b : array_like
        Backward vector.
    t : float
        Length of the time interval.
    eps : float, default=1e-8
        Tolerance of the Poisson truncation.
    ufactor : float, default=1.01
        Uniformization factor.

    Returns
    -------
    H : (2n,) ndarray
        Diagonal terms in the first n entries, super-diagonal terms in the entries n to 2n-2.
    """
    alpha = ensure_probability_vector(alpha)
    n = len(alpha)
    rate = ensure_rate_vector(rate, n=n)
    try:
        f = ensure_floating_array(f, ndim=1, size=n)
        b = ensure_floating_array(b, ndim=1, size=n)
    except ValueError as e:
        raise DomainError(f"Forward and backward vectors must have one entry per phase: {e}") from e
    t = ensure_positive_number(t, "The interval length", strict=False)

    P = rate.copy()
    qv = unif(cf1_matrix, P, ufactor)
    right = rightbound(qv * t, eps)
    prob = np.empty(right + 2)
    weight = pmf(qv * t, 0, right + 1, prob)
    _, H = mexp_conv(cf1_matrix, True, P, qv, prob, right, weight, f, b)
    return H


def moment(alpha, rate, k: int = 1) -> float:
    r""" Raw moment :math:`E[T^k] = k!\, \alpha (-Q)^{-k} \mathbf{1}` of a CF1 distribution.

    Parameters
    ----------
    alpha : array_like
        Initial probabilities.
    rate : array_like
        Exit rates.
    k : int, default=1
        Order of the moment.

    Returns
    -------
    moment : float
        The k-th moment.
    """
    if k < 0:
        raise DomainError(f"The order of a moment must be non-negative, but was {k}.")
    alpha = ensure_probability_vector(alpha)
    rate = ensure_rate_vector(rate, n=len(alpha))
    v = np.ones(len(alpha))
    for _ in range(k):
        # solves (-Q) x = v by backward substitution
        v = np.cumsum((v / rate)[::-1])[::-1]
    return math.factorial(k) * float(alpha @ v)


class CF1Model(Model):
    r""" A phase-type distribution in canonical form 1 (CF1), i.e., the absorption time of the acyclic chain

    .. math::

        0 \rightarrow 1 \rightarrow \cdots \rightarrow n-1 \rightarrow \text{absorption}

    which starts in phase i with probability :math:`\alpha_i` and leaves phase i with rate :math:`\lambda_i`.

    Parameters
    ----------
    alpha : array_like
        Initial probabilities.
    rate : array_like
        Exit rates.
    eps : float, default=1e-8
        Tolerance of the Poisson truncation used in the transient evaluations.
    ufactor : float, default=1.01
        Uniformization factor used in the transient evaluations.

    See Also
    --------
    normalize, pdf, cdf, sample
    """

    def __init__(self, alpha, rate, eps: float = 1e-8, ufactor: float = 1.01):
        super().__init__()
        self._alpha = np.array(ensure_probability_vector(alpha), dtype=float)
        self._rate = np.array(ensure_rate_vector(rate, n=len(self._alpha)), dtype=float)
        self.eps = eps
        self.ufactor = ufactor

    @property
    def alpha(self) -> np.ndarray:
        r""" Initial probabilities.

        :type: (n,) ndarray
        """
        return self._alpha

    @property
    def rate(self) -> np.ndarray:
        r""" Exit rates.

        :type: (n,) ndarray
        """
        return self._rate

    @property
    def n_phases(self) -> int:
        r""" Number of phases. """
        return len(self._alpha)

    @property
    def is_canonical(self) -> bool:
        r""" Whether the rates are sorted ascending. """
        return bool(np.all(np.diff(self._rate) >= 0))

    @property
    def mean(self) -> float:
        r""" Expected absorption time. """
        return self.moment(1)

    @property
    def variance(self) -> float:
        r""" Variance of the absorption time. """
        return self.moment(2) - self.mean ** 2

    def moment(self, k: int = 1) -> float:
        r""" Raw moment of order k, see :func:`moment`. """
        return moment(self._alpha, self._rate, k)

    def normalized(self) -> "CF1Model":
        r""" Yields an equivalent model in canonical form, see :func:`cf1_sort`. """
        alpha, rate = normalize(self._alpha, self._rate)
        return CF1Model(alpha, rate, eps=self.eps, ufactor=self.ufactor)

    def pdf(self, t, log: bool = False) -> np.ndarray:
        r""" Density at the time points t, see :func:`pdf`. """
        return pdf(t, self._alpha, self._rate, eps=self.eps, ufactor=self.ufactor, log=log)

    def cdf(self, t, lower: bool = True, log: bool = False) -> np.ndarray:
        r""" Distribution function at the time points t, see :func:`cdf`. """
        return cdf(t, self._alpha, self._rate, eps=self.eps, ufactor=self.ufactor, lower=lower, log=log)

    def sample(self, n: int, random_state: Optional[np.random.RandomState] = None) -> np.ndarray:
        r""" Draws n samples, see :func:`sample`. """
        return sample(n, self._alpha, self._rate, random_state=random_state)
