import logging
import warnings
from typing import Optional, Union, Mapping, Iterable

import numpy as np

from ._cf1 import CF1Model
from ._em import emstep, _unpack_data
from ._fault_data import FaultData
from ..base import Model, Estimator
from ..util.callbacks import LikelihoodProgressCallback
from ..util.exceptions import DomainError, PhaseTypeError, NotConvergedWarning, LikelihoodDecreaseWarning

log = logging.getLogger(__name__)


class CF1SRM(Model):
    r""" NHPP-based software reliability model with a CF1 fault detection time distribution. The number of faults
    detected up to time t has the mean value function

    .. math::

        \Lambda(t) = \omega F(t),

    where :math:`\omega` is the expected total number of faults and :math:`F` the distribution function of
    the :class:`CF1Model`.

    Parameters
    ----------
    omega : float
        Expected total number of faults.
    alpha : array_like
        Initial probabilities of the CF1 distribution.
    rate : array_like
        Exit rates of the CF1 distribution.
    likelihoods : ndarray, optional, default=None
        Log-likelihoods of the EM iterates that led to this model.
    converged : bool, optional, default=None
        Whether the estimation converged.
    eps : float, default=1e-8
        Tolerance of the Poisson truncation.
    ufactor : float, default=1.01
        Uniformization factor.
    """

    def __init__(self, omega: float, alpha, rate, likelihoods: Optional[np.ndarray] = None,
                 converged: Optional[bool] = None, eps: float = 1e-8, ufactor: float = 1.01):
        super().__init__()
        if not omega > 0:
            raise DomainError(f"omega must be positive, but was {omega}.")
        self._omega = float(omega)
        self._cf1 = CF1Model(alpha, rate, eps=eps, ufactor=ufactor)
        self.likelihoods = likelihoods
        self.converged = converged
        self.eps = eps
        self.ufactor = ufactor

    @property
    def omega(self) -> float:
        r""" Expected total number of faults. """
        return self._omega

    @property
    def alpha(self) -> np.ndarray:
        r""" Initial probabilities of the fault detection time distribution. """
        return self._cf1.alpha

    @property
    def rate(self) -> np.ndarray:
        r""" Exit rates of the fault detection time distribution. """
        return self._cf1.rate

    @property
    def cf1(self) -> CF1Model:
        r""" The fault detection time distribution. """
        return self._cf1

    @property
    def n_phases(self) -> int:
        r""" Number of phases of the fault detection time distribution. """
        return self._cf1.n_phases

    @property
    def params(self) -> dict:
        r""" The parameters as mapping, suitable as input to :func:`emstep <phfit.markov.emstep>`. """
        return {"omega": self._omega, "alpha": self.alpha.copy(), "rate": self.rate.copy()}

    @property
    def df(self) -> int:
        r""" Degrees of freedom, i.e., :math:`\omega`, n-1 free initial probabilities and n rates. """
        return 2 * self.n_phases

    @property
    def llf(self) -> Optional[float]:
        r""" Log-likelihood of the last EM iterate, None if the model was not estimated. """
        if self.likelihoods is None or len(self.likelihoods) == 0:
            return None
        return float(self.likelihoods[-1])

    @property
    def n_iterations(self) -> int:
        r""" Number of performed EM iterations. """
        return 0 if self.likelihoods is None else len(self.likelihoods)

    @property
    def aic(self) -> Optional[float]:
        r""" Akaike information criterion :math:`-2\,\mathrm{llf} + 2\,\mathrm{df}`. """
        llf = self.llf
        return None if llf is None else -2. * llf + 2. * self.df

    def mvf(self, t) -> np.ndarray:
        r""" Expected number of faults detected up to time t. """
        return self._omega * self._cf1.cdf(t)

    def intensity(self, t) -> np.ndarray:
        r""" Fault detection rate at time t. """
        return self._omega * self._cf1.pdf(t)

    def residual(self, t) -> np.ndarray:
        r""" Expected number of faults remaining undetected at time t. """
        return self._omega * self._cf1.cdf(t, lower=False)


class MaximumLikelihoodCF1SRM(Estimator):
    r""" Maximum likelihood estimation of a :class:`CF1SRM` by the EM algorithm.

    Each iteration executes :func:`emstep <phfit.markov.emstep>`. The iteration stops when the absolute change of
    the log-likelihood falls below `abstol` and the relative change below `reltol`.

    Parameters
    ----------
    n_phases : int, default=2
        Number of phases of the CF1 distribution.
    eps : float, default=1e-8
        Tolerance of the Poisson truncation.
    ufactor : float, default=1.01
        Uniformization factor.
    maxiter : int, default=2000
        Maximum number of EM iterations. When reached, a :class:`NotConvergedWarning` is issued.
    reltol : float, default=sqrt(machine epsilon)
        Relative tolerance on the change of the log-likelihood.
    abstol : float, default=1e200
        Absolute tolerance on the change of the log-likelihood.
    printsteps : int, default=50
        Log the progress every printsteps iterations (on level DEBUG).
    initial_model : CF1SRM, optional, default=None
        Starting point of the iteration. If None, the starting point is derived from the data.
    progress : object, optional, default=None
        A tqdm-like progress bar type.
    """

    #: relative decrease of the log-likelihood between iterations that is attributed to truncation errors
    _llf_decrease_tolerance = 1e-8

    def __init__(self, n_phases: int = 2, eps: float = 1e-8, ufactor: float = 1.01, maxiter: int = 2000,
                 reltol: float = float(np.sqrt(np.finfo(float).eps)), abstol: float = 1e200,
                 printsteps: int = 50, initial_model: Optional[CF1SRM] = None, progress=None):
        super().__init__()
        self.n_phases = n_phases
        self.eps = eps
        self.ufactor = ufactor
        self.maxiter = maxiter
        self.reltol = reltol
        self.abstol = abstol
        self.printsteps = printsteps
        self.initial_model = initial_model
        self.progress = progress

    @property
    def n_phases(self) -> int:
        r""" Number of phases of the estimated CF1 distribution. """
        return self._n_phases

    @n_phases.setter
    def n_phases(self, value: int):
        if int(value) < 1:
            raise DomainError(f"The number of phases must be positive, but was {value}.")
        self._n_phases = int(value)

    @property
    def maxiter(self) -> int:
        r""" Maximum number of EM iterations. """
        return self._maxiter

    @maxiter.setter
    def maxiter(self, value: int):
        self._maxiter = int(value)

    def fetch_model(self) -> Optional[CF1SRM]:
        r""" Yields the estimated model or None if :meth:`fit` was not called yet.

        Returns
        -------
        model : CF1SRM or None
            The model.
        """
        return self._model

    def initial_params(self, data: FaultData) -> dict:
        r""" Heuristic starting point: omega slightly above the number of detected faults, uniform initial
        probabilities, and rates spread geometrically around the phase count over the mean detection time.

        Parameters
        ----------
        data : FaultData
            The fault data.

        Returns
        -------
        params : dict
            The parameters `omega`, `alpha`, `rate`.
        """
        total = data.total
        if total == 0:
            raise DomainError("Cannot initialize a model on fault data without detected faults.")
        mean_time = data.mean_time
        if not mean_time > 0:
            raise DomainError(f"Cannot initialize a model from a mean detection time of {mean_time}.")
        n = self.n_phases
        if n == 1:
            rate = np.array([1. / mean_time])
        else:
            rate = n / mean_time * 2. ** np.linspace(-1., 1., num=n)
        return {"omega": 1. + total, "alpha": np.full(n, 1. / n), "rate": rate}

    def fit(self, data: FaultData, initial_model: Optional[CF1SRM] = None, **kwargs):
        r""" Runs the EM algorithm on fault data.

        Parameters
        ----------
        data : FaultData
            The fault data.
        initial_model : CF1SRM, optional, default=None
            Overrides the initial model given to the constructor.
        **kwargs
            Ignored kwargs for scikit-learn compatibility.

        Returns
        -------
        self : MaximumLikelihoodCF1SRM
            Reference to self.
        """
        data = _unpack_data(data)
        if initial_model is None:
            initial_model = self.initial_model
        if initial_model is not None:
            if initial_model.n_phases != self.n_phases:
                raise DomainError(f"The initial model has {initial_model.n_phases} phases, "
                                  f"but {self.n_phases} were requested.")
            params = initial_model.params
        else:
            params = self.initial_params(data)

        likelihoods = np.empty(self.maxiter)
        converged = False
        it = 0
        with LikelihoodProgressCallback(self.progress, f"EM cf{self.n_phases}", self.maxiter) as callback:
            while not converged and it < self.maxiter:
                result = emstep(params, data, eps=self.eps, ufactor=self.ufactor)
                llf = result["llf"]
                params = result["param"]
                likelihoods[it] = llf

                if it > 0:
                    aerror = abs(llf - likelihoods[it - 1])
                    rerror = aerror / abs(likelihoods[it - 1])
                    if llf - likelihoods[it - 1] < -self._llf_decrease_tolerance * max(1., abs(llf)):
                        warnings.warn(f"Log-likelihood decreased in iteration {it} "
                                      f"({likelihoods[it - 1]} -> {llf}).", LikelihoodDecreaseWarning)
                    if aerror < self.abstol and rerror < self.reltol:
                        converged = True
                if self.printsteps > 0 and it % self.printsteps == 0:
                    log.debug(f"cf{self.n_phases} iteration={it}, llf={llf}, omega={params['omega']}")
                callback(llf=llf)
                it += 1

        likelihoods = np.resize(likelihoods, it)
        if not converged:
            warnings.warn(f"EM for {self.n_phases} phases did not converge within {self.maxiter} iterations.",
                          NotConvergedWarning)
        log.info(f"cf{self.n_phases} finished after {it} iterations (converged={converged}), "
                 f"llf={likelihoods[-1] if it > 0 else None}")
        self._model = CF1SRM(params["omega"], params["alpha"], params["rate"], likelihoods=likelihoods,
                             converged=converged, eps=self.eps, ufactor=self.ufactor)
        return self


def fit_cf1srm(data: Union[FaultData, Mapping], phases: Union[int, Iterable[int]] = range(2, 11),
               selection: Optional[str] = "AIC", **kwargs):
    r""" Fits CF1 software reliability models for several phase counts and selects one of them.

    Parameters
    ----------
    data : FaultData or Mapping
        The fault data.
    phases : int or iterable of int, default=range(2, 11)
        The numbers of phases to try.
    selection : str or None, default="AIC"
        Selection criterion, currently only "AIC". If None, all models are returned.
    **kwargs
        Further arguments to :class:`MaximumLikelihoodCF1SRM`.

    Returns
    -------
    model : CF1SRM or list of CF1SRM
        The selected model or all models if selection is None.
    """
    if selection not in (None, "AIC"):
        raise ValueError(f"Unknown selection criterion {selection}, only 'AIC' or None are supported.")
    data = _unpack_data(data)
    if isinstance(phases, int):
        phases = [phases]

    models = []
    for n in phases:
        try:
            models.append(MaximumLikelihoodCF1SRM(n_phases=n, **kwargs).fit(data).fetch_model())
        except PhaseTypeError as e:
            log.warning(f"Skipping cf{n} due to error in estimation: {str(e)}.")
    if len(models) == 0:
        raise PhaseTypeError("None of the phase counts could be fit to the data.")
    if selection is None:
        return models
    return min(models, key=lambda m: m.aic)
