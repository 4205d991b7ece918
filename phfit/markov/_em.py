r"""One iteration of the EM algorithm for NHPP software reliability models whose fault detection times follow a
CF1 phase-type distribution.

The faults of the software are modelled as :math:`N \sim \mathrm{Poisson}(\omega)` independent absorption times
of the CF1 chain. The complete data consists of the full sample paths of all faults; the expected sufficient
statistics (number of faults, starting phases, sojourn times and exits per phase) are computed with a forward
pass over the observation times and a backward pass that combines both directions by the convolution integrals
of :func:`mexp_conv <phfit.markov.mexp_conv>`.
"""

import collections
from typing import Mapping, Union

import numpy as np
from scipy.special import gammaln

from ._cf1 import cf1_sort
from ._fault_data import FaultData
from ._uniformization import cf1_matrix, unif, mexpv, mexp_conv
from ..numeric import rightbound, pmf
from ..util.exceptions import NumericalError, DomainError
from ..util.types import ensure_probability_vector, ensure_rate_vector, ensure_positive_number

EMStepResult = collections.namedtuple('EMStepResult', ['omega', 'alpha', 'rate', 'llf'])


def _ensure_finite(arr, what):
    if not np.all(np.isfinite(arr)):
        bad = np.flatnonzero(~np.isfinite(np.ravel(arr)))[0]
        raise NumericalError(f"Non-finite {what} encountered at flat index {bad}.")


def cf1emstep(omega: float, alpha, rate, time, fault, type, eps: float = 1e-8,
              ufactor: float = 1.01) -> EMStepResult:
    r""" Performs one EM step for a CF1 software reliability model on grouped and censored fault data.

    The log-likelihood of the data under the input parameters is

    .. math::

        \sum_k \left[x_k \log\omega(S_{k-1} - S_k) - \log x_k!\right] + \sum_k u_k \log\omega f(t_k)
            - \omega (1 - S_K),

    where :math:`S_k` is the survival function at the end :math:`t_k` of the k-th interval, :math:`f` is the
    density, :math:`x_k` are the fault counts and :math:`u_k` the type flags.

    Parameters
    ----------
    omega : float
        Expected total number of faults.
    alpha : array_like
        Initial probabilities.
    rate : array_like
        Exit rates.
    time : array_like
        Lengths of the observation intervals.
    fault : array_like
        Number of faults detected inside the intervals.
    type : array_like
        Flags of faults detected exactly at the end of the intervals.
    eps : float, default=1e-8
        Tolerance of the Poisson truncation.
    ufactor : float, default=1.01
        Uniformization factor.

    Returns
    -------
    result : EMStepResult
        Named tuple of the updated `omega`, `alpha`, and `rate` and the log-likelihood `llf` of the input
        parameters. The updated parameters are not canonicalized.

    Raises
    ------
    DomainError
        If the parameters or the data are invalid.
    NumericalError
        If a likelihood contribution or an expected sojourn time is not positive or if an intermediate result is
        not finite.
    """
    omega = ensure_positive_number(omega, "omega")
    alpha = ensure_probability_vector(alpha)
    n = len(alpha)
    rate = ensure_rate_vector(rate, n=n)
    data = FaultData(time, fault, type)
    time, fault, type = data.time, data.fault, data.type
    K = data.n_records

    P = rate.copy()
    qv = unif(cf1_matrix, P, ufactor)
    right_max = rightbound(qv * time.max(), eps)
    prob = np.empty(right_max + 2)
    xi = np.empty(n)
    vc = np.empty((right_max + 2, n))
    exit_vector = np.zeros(n)
    exit_vector[-1] = rate[-1]

    # forward pass, f[k] = alpha exp(Q t_k)
    f = np.empty((K + 1, n))
    f[0] = alpha
    for k in range(K):
        right = rightbound(qv * time[k], eps)
        weight = pmf(qv * time[k], 0, right, prob)
        mexpv(cf1_matrix, True, P, prob, right, weight, f[k], f[k + 1], xi)
    _ensure_finite(f, "forward vector")
    survival = f.sum(axis=1)

    # coefficients of the backward vectors g_k = a_k 1 + d_k xi
    a = np.zeros(K + 1)
    d = np.zeros(K + 1)
    llf = 0.
    for k in range(1, K + 1):
        x = fault[k - 1]
        if x > 0:
            diff = survival[k - 1] - survival[k]
            if not diff > 0:
                raise NumericalError(f"Probability of observation interval {k - 1} is not positive ({diff}).")
            a[k - 1] += x / diff
            a[k] -= x / diff
            llf += x * np.log(omega * diff) - gammaln(x + 1.)
        if type[k - 1] == 1:
            density = rate[-1] * f[k, -1]
            if not density > 0:
                raise NumericalError(f"Density at the end of observation interval {k - 1} is not positive "
                                     f"({density}).")
            d[k] += 1. / density
            llf += np.log(omega * density)
    a[K] += omega
    llf -= omega * (1. - survival[K])
    new_omega = data.total + omega * survival[K]

    # backward pass, b = sum_{j >= k} exp(Q (t_j - t_k)) g_j
    b = a[K] + d[K] * exit_vector
    cross = np.zeros(2 * n)
    H = np.empty(2 * n)
    y = np.empty(n)
    for k in range(K, 0, -1):
        right = rightbound(qv * time[k - 1], eps)
        weight = pmf(qv * time[k - 1], 0, right + 1, prob)
        mexp_conv(cf1_matrix, False, P, qv, prob, right, weight, b, f[k - 1], y, H, xi, vc)
        cross += H
        b = y + a[k - 1] + d[k - 1] * exit_vector
    _ensure_finite(cross, "convolution integral")
    _ensure_finite(b, "backward vector")

    # time spent after the observation points, (sum_k a_k f_k) (-Q)^{-1}
    tail = np.cumsum(a @ f) / rate

    initial = alpha * b
    sojourn = cross[:n] + tail
    exits = np.empty(n)
    exits[:-1] = rate[:-1] * (cross[n:2 * n - 1] + tail[:-1])
    exits[-1] = new_omega

    bad = np.flatnonzero(~(sojourn > 0))
    if bad.size > 0:
        raise NumericalError(f"Expected sojourn time in phase {bad[0]} is not positive ({sojourn[bad[0]]}).")
    bad = np.flatnonzero(~(exits > 0))
    if bad.size > 0:
        raise NumericalError(f"Expected number of exits from phase {bad[0]} is not positive ({exits[bad[0]]}).")
    if not initial.sum() > 0:
        raise NumericalError(f"Expected initial phase occupancy is not positive ({initial.sum()}).")

    new_alpha = np.clip(initial, 0., None)
    new_alpha /= new_alpha.sum()
    new_rate = exits / sojourn
    _ensure_finite(new_rate, "rate")
    return EMStepResult(float(new_omega), new_alpha, new_rate, float(llf))


def _unpack_data(data):
    if isinstance(data, FaultData):
        return data
    if isinstance(data, Mapping):
        try:
            return FaultData(data["time"], data.get("fault"), data.get("type"))
        except KeyError:
            raise DomainError("Fault data mappings need at least the key 'time'.") from None
    raise DomainError(f"Unsupported fault data of type {data.__class__.__name__}.")


def emstep(params: Mapping, data: Union[FaultData, Mapping], eps: float = 1e-8, ufactor: float = 1.01) -> dict:
    r""" Executes one EM step and brings the updated parameters into canonical form.

    Parameters
    ----------
    params : Mapping
        Current parameters under the keys `omega`, `alpha`, and `rate`.
    data : FaultData or Mapping
        The fault data, either as :class:`FaultData` or as mapping with the keys `time`, `fault`, and `type`.
    eps : float, default=1e-8
        Tolerance of the Poisson truncation.
    ufactor : float, default=1.01
        Uniformization factor.

    Returns
    -------
    result : dict
        The updated parameters (`param`), their difference to the input parameters (`pdiff`), the log-likelihood
        of the input parameters (`llf`), and the updated expected total number of faults (`total`).
    """
    data = _unpack_data(data)
    omega = params["omega"]
    alpha = np.asarray(params["alpha"], dtype=float)
    rate = np.asarray(params["rate"], dtype=float)
    new_omega, new_alpha, new_rate, llf = cf1emstep(omega, alpha, rate, data.time, data.fault, data.type,
                                                    eps=eps, ufactor=ufactor)
    cf1_sort(new_alpha, new_rate)
    return {
        "param": {"omega": new_omega, "alpha": new_alpha, "rate": new_rate},
        "pdiff": {"omega": new_omega - omega, "alpha": new_alpha - alpha, "rate": new_rate - rate},
        "llf": llf,
        "total": new_omega,
    }
