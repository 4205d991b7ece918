import numbers
from typing import Tuple, Optional

import numpy as np

from .exceptions import DomainError


def ensure_number_array(arr, shape: Tuple = None, ndim: int = None, size=None) -> np.ndarray:
    return ensure_array(arr, shape=shape, ndim=ndim, size=size, dtype=np.number)


def ensure_integer_array(arr, shape: Tuple = None, ndim: int = None, size=None) -> np.ndarray:
    return ensure_array(arr, shape=shape, ndim=ndim, size=size, dtype=np.integer)


def ensure_floating_array(arr, shape: Tuple = None, ndim: int = None, size=None) -> np.ndarray:
    r""" Converts to a float64 array, integer input is accepted and cast. """
    arr = ensure_number_array(arr, shape=shape, ndim=ndim, size=size)
    return arr.astype(np.float64, copy=False)


def ensure_array(arr, shape: Optional[Tuple] = None, ndim: Optional[int] = None,
                 dtype=None, size=None) -> np.ndarray:
    if isinstance(arr, set):
        if dtype is not None:
            arr = np.fromiter(arr, dtype, len(arr))
        else:
            arr = np.asarray(list(arr))
    if not isinstance(arr, np.ndarray):
        arr = np.asanyarray(arr)
        if ndim is not None and arr.ndim < ndim:
            arr = np.atleast_1d(arr) if ndim == 1 else arr.reshape((1,) * (ndim - arr.ndim) + arr.shape)

    if shape is not None and arr.shape != shape:
        raise ValueError(f"Shape of provided array was {arr.shape} != {shape}")
    if ndim is not None and arr.ndim != ndim:
        raise ValueError(f"ndim of provided array was {arr.ndim} != {ndim}")
    if size is not None and np.size(arr) != size:
        raise ValueError(f"size of provided array was {np.size(arr)} != {size}")
    if dtype is not None and not np.issubdtype(arr.dtype, dtype):
        raise ValueError(f"Array got incompatible dtype: {arr.dtype} is not a subtype of {dtype}.")
    return arr


def ensure_rate_vector(rate, n: Optional[int] = None) -> np.ndarray:
    r""" Makes sure that rate is a one-dimensional float array of strictly positive, finite exit rates.

    Parameters
    ----------
    rate : array_like
        The exit rates.
    n : int, optional, default=None
        Expected number of phases.

    Returns
    -------
    rate : (n,) ndarray
        The validated rates.

    Raises
    ------
    DomainError
        If a rate is not positive or not finite, or if rate is not a vector of n numbers.
    """
    try:
        rate = ensure_floating_array(rate, ndim=1, size=n)
    except ValueError as e:
        raise DomainError(f"Invalid exit rates: {e}") from e
    if rate.size == 0:
        raise DomainError("A phase-type distribution needs at least one phase.")
    bad = np.flatnonzero(~np.isfinite(rate) | (rate <= 0))
    if bad.size > 0:
        raise DomainError(f"Rates must be positive and finite, but rate[{bad[0]}] = {rate[bad[0]]}.")
    return rate


def ensure_probability_vector(alpha, n: Optional[int] = None, atol: float = 1e-8) -> np.ndarray:
    r""" Makes sure that alpha is a one-dimensional probability vector.

    Parameters
    ----------
    alpha : array_like
        The initial probabilities.
    n : int, optional, default=None
        Expected number of phases.
    atol : float, default=1e-8
        Absolute tolerance on the deviation of the sum from one.

    Returns
    -------
    alpha : (n,) ndarray
        The validated probabilities.

    Raises
    ------
    DomainError
        If an entry lies outside of [0, 1] or the entries do not sum to one, or if alpha is not a vector of n numbers.
    """
    try:
        alpha = ensure_floating_array(alpha, ndim=1, size=n)
    except ValueError as e:
        raise DomainError(f"Invalid initial probabilities: {e}") from e
    bad = np.flatnonzero(~np.isfinite(alpha) | (alpha < 0) | (alpha > 1))
    if bad.size > 0:
        raise DomainError(f"Probabilities must lie in [0, 1], but alpha[{bad[0]}] = {alpha[bad[0]]}.")
    if abs(alpha.sum() - 1.) > atol:
        raise DomainError(f"Initial probabilities must sum to one but sum to {alpha.sum()}.")
    return alpha


def ensure_positive_number(value, name: str, strict: bool = True) -> float:
    r""" Checks a scalar argument for being a finite (strictly) positive real number. """
    if not isinstance(value, numbers.Real) or not np.isfinite(value) or value < 0 or (strict and value == 0):
        raise DomainError(f"{name} must be a {'positive' if strict else 'non-negative'} finite number, "
                          f"but was {value}.")
    return float(value)
