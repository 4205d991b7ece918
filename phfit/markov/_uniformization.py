r"""Uniformization of CF1 generators and truncated power series for the matrix exponential.

The generator :math:`Q` of a CF1 chain with rates :math:`\lambda_0,\ldots,\lambda_{n-1}` has the diagonal
:math:`-\lambda_i` and the super-diagonal :math:`\lambda_i` (the last phase leaks into absorption). With a
uniformization rate :math:`q \geq \max_i \lambda_i` one obtains the sub-stochastic matrix :math:`P = I + Q/q` and

.. math::

    e^{Qt} = \sum_{k=0}^\infty e^{-qt}\frac{(qt)^k}{k!} P^k,

which is truncated at :func:`phfit.numeric.rightbound`.
"""

import numpy as np

from ..util.exceptions import DomainError


class CF1Matrix:
    r""" The bidiagonal one-step operator of a uniformized CF1 chain. It is represented by the vector
    :math:`p = \lambda / q` of one-step exit probabilities, so that :math:`P_{ii} = 1 - p_i` and
    :math:`P_{i,i+1} = p_i`. Use the module level instance :data:`cf1_matrix`.
    """

    def unif(self, rate: np.ndarray, ufactor: float = 1.01) -> float:
        r""" Uniformizes the rates in place.

        Parameters
        ----------
        rate : ndarray
            Exit rates of the phases, overwritten by the one-step exit probabilities.
        ufactor : float, default=1.01
            Safety factor, the uniformization rate is ``ufactor * max(rate)``.

        Returns
        -------
        qv : float
            The uniformization rate.
        """
        if not ufactor > 1:
            raise DomainError(f"The uniformization factor must be larger than one, but was {ufactor}.")
        bad = np.flatnonzero(~np.isfinite(rate) | (rate <= 0))
        if bad.size > 0:
            raise DomainError(f"Rates must be positive and finite, but rate[{bad[0]}] = {rate[bad[0]]}.")
        qv = ufactor * float(np.max(rate))
        rate /= qv
        return qv

    def dot(self, transpose: bool, p: np.ndarray, x: np.ndarray, out: np.ndarray = None) -> np.ndarray:
        r""" Applies one step, i.e., :math:`Px` or :math:`P^\top x` if `transpose` is set.
        The output may alias the input.
        """
        if out is None:
            out = np.empty_like(x)
        if transpose:
            shifted = p[:-1] * x[:-1]
            np.multiply(1. - p, x, out=out)
            out[1:] += shifted
        else:
            shifted = p[:-1] * x[1:]
            np.multiply(1. - p, x, out=out)
            out[:-1] += shifted
        return out


cf1_matrix = CF1Matrix()


def unif(structure, rate: np.ndarray, ufactor: float = 1.01) -> float:
    r""" Converts exit rates into a uniformized one-step operator in place and returns the uniformization rate.

    Parameters
    ----------
    structure : CF1Matrix
        The structure of the generator, usually :data:`cf1_matrix`.
    rate : ndarray
        The exit rates, overwritten in place.
    ufactor : float, default=1.01
        Uniformization factor, must be larger than one.

    Returns
    -------
    qv : float
        The uniformization rate ``ufactor * max(rate)``.

    Raises
    ------
    DomainError
        If a rate is not positive or if the uniformization factor is not larger than one.
    """
    return structure.unif(rate, ufactor)


def mexpv(structure, transpose: bool, P: np.ndarray, prob: np.ndarray, right: int, weight: float,
          x: np.ndarray, y: np.ndarray = None, xi: np.ndarray = None) -> np.ndarray:
    r""" Computes the action of the matrix exponential on a vector by the truncated uniformization series

    .. math::

        y = \frac{1}{w}\sum_{k=0}^{r} p_k P^k x,

    where :math:`p_k` are the Poisson weights filled by :func:`phfit.numeric.pmf` and :math:`w` their sum.

    Parameters
    ----------
    structure : CF1Matrix
        The structure of the generator.
    transpose : bool
        Whether to apply :math:`P^\top`, i.e., to propagate a row vector (probability distribution over phases).
    P : ndarray
        Uniformized operator as produced by :func:`unif`.
    prob : ndarray
        Poisson weights with valid entries ``0..right``.
    right : int
        Right truncation point.
    weight : float
        Total captured Poisson mass.
    x : ndarray
        Input vector.
    y : ndarray, optional, default=None
        Output buffer, may alias `x`.
    xi : ndarray, optional, default=None
        Scratch buffer, must not alias `x` or `y`.

    Returns
    -------
    y : ndarray
        The result.
    """
    if xi is None:
        xi = np.empty_like(x)
    xi[:] = x
    if y is None:
        y = np.empty_like(x)
    np.multiply(prob[0], xi, out=y)
    for k in range(1, right + 1):
        structure.dot(transpose, P, xi, out=xi)
        y += prob[k] * xi
    y /= weight
    return y


def mexp_conv(structure, transpose: bool, P: np.ndarray, qv: float, prob: np.ndarray, right: int, weight: float,
              x: np.ndarray, z: np.ndarray, y: np.ndarray = None, H: np.ndarray = None, xi: np.ndarray = None,
              vc: np.ndarray = None):
    r""" Computes :math:`e^{Qt}x` together with the convolution integral

    .. math::

        \int_0^t \left(e^{Q^\top s} u\right)_i \left(e^{Q(t-s)} v\right)_j \,\mathrm{d}s

    for the phase pairs :math:`(i, i)` and :math:`(i, i+1)`. With `transpose` set, :math:`u=x` is propagated as
    a row vector and :math:`v=z` as a column vector, otherwise :math:`u=z` and :math:`v=x`. The integral follows
    from the uniformization identity

    .. math::

        \int_0^t e^{Qs} A e^{Q(t-s)}\,\mathrm{d}s = \frac{1}{q}\sum_{k=0}^\infty p_{k+1}
            \sum_{l=0}^{k} P^l A P^{k-l},

    where the inner sums are accumulated backwards in the table `vc`.

    Parameters
    ----------
    structure : CF1Matrix
        The structure of the generator.
    transpose : bool
        Whether `x` is a row vector.
    P : ndarray
        Uniformized operator as produced by :func:`unif`.
    qv : float
        Uniformization rate.
    prob : ndarray
        Poisson weights with valid entries ``0..right+1``.
    right : int
        Right truncation point.
    weight : float
        Total captured Poisson mass.
    x : ndarray
        Vector that is propagated over the full interval.
    z : ndarray
        Vector on the other side of the convolution.
    y : ndarray, optional, default=None
        Output buffer for :math:`e^{Qt}x` (or the row vector analogue), may alias `x`.
    H : ndarray, optional, default=None
        Output buffer of length 2n. The first n entries hold the diagonal, the entries ``n..2n-2`` hold the
        super-diagonal :math:`(i, i+1)`, the last entry is zero.
    xi : ndarray, optional, default=None
        Scratch vector, must not alias any other argument.
    vc : ndarray, optional, default=None
        Scratch table with at least ``right + 2`` rows and n columns.

    Returns
    -------
    y : ndarray
        The propagated vector.
    H : ndarray
        The convolution integrals.
    """
    n = len(x)
    if xi is None:
        xi = np.empty(n)
    if vc is None:
        vc = np.empty((right + 2, n))
    if y is None:
        y = np.empty(n)
    if H is None:
        H = np.empty(2 * n)

    vc[right + 1] = 0.
    for l in range(right, -1, -1):
        structure.dot(not transpose, P, vc[l + 1], out=vc[l])
        vc[l] += prob[l + 1] * z

    xi[:] = x
    np.multiply(prob[0], xi, out=y)
    H[:] = 0.
    for l in range(right + 1):
        if l > 0:
            structure.dot(transpose, P, xi, out=xi)
            y += prob[l] * xi
        H[:n] += xi * vc[l]
        if transpose:
            H[n:2 * n - 1] += xi[:-1] * vc[l, 1:]
        else:
            H[n:2 * n - 1] += vc[l, :-1] * xi[1:]
    y /= weight
    H /= qv * weight
    return y, H
