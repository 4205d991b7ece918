import logging
import pickle

import numpy as np
import pytest
from numpy.testing import assert_equal, assert_raises, assert_allclose, assert_, assert_array_equal

from phfit.markov import CF1SRM, MaximumLikelihoodCF1SRM, fit_cf1srm, FaultData, sample, cf1emstep, cdf
from phfit.util.exceptions import DomainError, PhaseTypeError, NotConvergedWarning


class ProgressMock:
    def __init__(self):
        self.total = 1
        self.n = 0
        self.n_close_calls = 0
        self.n_update_calls = 0

    def set_description(self, *_): ...

    def update(self, n=1):
        self.n += n
        self.n_update_calls += 1

    def close(self): self.n_close_calls += 1


@pytest.fixture(scope="module")
def data():
    samples = sample(120, [.2, .3, .5], [.2, .5, 1.], random_state=np.random.RandomState(17))
    detected = samples[samples <= 12.]
    counts, _ = np.histogram(detected, bins=np.arange(0., 13.))
    return FaultData.from_counts(counts)


def test_model_functions():
    model = CF1SRM(50., [.5, .5], [1., 2.])
    t = np.array([0., .5, 1., 4.])
    assert_allclose(model.mvf(t), 50. * cdf(t, [.5, .5], [1., 2.]))
    assert_allclose(model.mvf(t) + model.residual(t), 50.)
    assert_allclose(model.mvf([0.]), [0.], atol=1e-12)
    assert_equal(model.n_phases, 2)
    assert_equal(model.df, 4)
    assert_(model.llf is None)
    assert_(model.aic is None)
    assert_equal(model.n_iterations, 0)


def test_exponential_intensity():
    model = CF1SRM(10., [1.], [.5])
    t = np.array([0., 1., 3.])
    assert_allclose(model.intensity(t), 10. * .5 * np.exp(-.5 * t), rtol=1e-7)


def test_model_information_criterion():
    model = CF1SRM(10., [.5, .5], [1., 2.], likelihoods=np.array([-30., -20., -19.5]), converged=True)
    assert_equal(model.llf, -19.5)
    assert_equal(model.n_iterations, 3)
    assert_allclose(model.aic, 2. * 19.5 + 2. * 4)


def test_model_params_are_copies():
    model = CF1SRM(10., [.5, .5], [1., 2.])
    params = model.params
    params["rate"][0] = 100.
    assert_equal(model.rate[0], 1.)
    assert_equal(params["omega"], 10.)


def test_model_invalid():
    with assert_raises(DomainError):
        CF1SRM(0., [1.], [1.])
    with assert_raises(DomainError):
        CF1SRM(1., [.5, .6], [1., 2.])
    with assert_raises(DomainError):
        CF1SRM(1., [1.], [0.])


def test_model_pickle_and_copy():
    model = CF1SRM(10., [.5, .5], [1., 2.], likelihoods=np.array([-3.]), converged=False)
    for restored in (pickle.loads(pickle.dumps(model)), model.copy()):
        assert_equal(restored.omega, model.omega)
        assert_array_equal(restored.rate, model.rate)
        assert_array_equal(restored.alpha, model.alpha)
        assert_equal(restored.llf, -3.)


def test_initial_params(data):
    est = MaximumLikelihoodCF1SRM(n_phases=1)
    params = est.initial_params(data)
    assert_equal(params["omega"], 1. + data.total)
    assert_allclose(params["rate"], [1. / data.mean_time])

    est.n_phases = 3
    params = est.initial_params(data)
    assert_allclose(params["alpha"], [1. / 3] * 3)
    assert_allclose(params["rate"], 3. / data.mean_time * np.array([.5, 1., 2.]))

    with assert_raises(DomainError):
        est.initial_params(FaultData([1., 1.]))


def test_fit_exponential(data):
    est = MaximumLikelihoodCF1SRM(n_phases=1)
    model = est.fit(data).fetch_model()
    assert_(est.has_model)
    assert_(model.converged)
    assert_(np.all(np.diff(model.likelihoods) > -1e-8 * np.abs(model.likelihoods[1:])))
    # at the fixed point omega equals the detected faults plus the expected undetected ones
    survival = np.exp(-model.rate[0] * data.max_time)
    assert_allclose(model.omega, data.total / (1. - survival), rtol=1e-4)


@pytest.mark.filterwarnings("ignore::phfit.util.exceptions.NotConvergedWarning")
def test_fit(data):
    est = MaximumLikelihoodCF1SRM(n_phases=2, maxiter=300)
    model = est.fit(data).fetch_model()
    assert_equal(model.n_phases, 2)
    assert_(0 < model.n_iterations <= 300)
    assert_(model.likelihoods[-1] > model.likelihoods[0])
    assert_(np.all(np.diff(model.rate) >= 0))
    assert_allclose(model.alpha.sum(), 1.)
    assert_(model.omega >= data.total)
    # data is writeable again after fit
    assert_(data.flags.writeable)


def test_not_converged(data):
    est = MaximumLikelihoodCF1SRM(n_phases=2, maxiter=3, reltol=0.)
    with pytest.warns(NotConvergedWarning):
        model = est.fit(data).fetch_model()
    assert_(not model.converged)
    assert_equal(model.n_iterations, 3)


def test_initial_model(data):
    initial = CF1SRM(40., [.3, .7], [.4, 1.2])
    est = MaximumLikelihoodCF1SRM(n_phases=2, maxiter=1, initial_model=initial)
    with pytest.warns(NotConvergedWarning):
        model = est.fit(data).fetch_model()
    expected = cf1emstep(40., [.3, .7], [.4, 1.2], data.time, data.fault, data.type)
    assert_allclose(model.likelihoods[0], expected.llf)
    assert_allclose(model.omega, expected.omega)
    # the initial model is not modified
    assert_equal(initial.omega, 40.)
    assert_array_equal(initial.rate, [.4, 1.2])

    with assert_raises(DomainError):
        MaximumLikelihoodCF1SRM(n_phases=3).fit(data, initial_model=initial)


def test_progress_bar_update_called(data):
    progress = ProgressMock()

    class ProgressFactory:
        def __new__(cls, *args, **kwargs): return progress

    est = MaximumLikelihoodCF1SRM(n_phases=2, maxiter=5, reltol=0., progress=ProgressFactory)
    with pytest.warns(NotConvergedWarning):
        est.fit(data)
    np.testing.assert_equal(progress.n_update_calls, 5)
    np.testing.assert_equal(progress.n_close_calls, 1)


def test_logging(data, caplog):
    caplog.set_level(logging.DEBUG, logger="phfit.markov")
    est = MaximumLikelihoodCF1SRM(n_phases=2, maxiter=3, reltol=0., printsteps=2)
    with pytest.warns(NotConvergedWarning):
        est.fit(data)
    messages = [record.getMessage() for record in caplog.records if record.name == "phfit.markov._srm"]
    assert_(any("iteration=0" in m for m in messages))
    assert_(any("iteration=2" in m for m in messages))
    assert_(not any("iteration=1" in m for m in messages))
    assert_(any("finished after 3 iterations" in m for m in messages))


def test_params():
    est = MaximumLikelihoodCF1SRM(n_phases=3, maxiter=10)
    params = est.get_params()
    assert_equal(params["n_phases"], 3)
    assert_equal(params["maxiter"], 10)
    assert_equal(params["ufactor"], 1.01)
    est.set_params(n_phases=4, eps=1e-10)
    assert_equal(est.n_phases, 4)
    assert_equal(est.eps, 1e-10)
    assert_("n_phases=4" in repr(est))
    with assert_raises(ValueError):
        est.set_params(n_states=2)
    with assert_raises(DomainError):
        est.n_phases = 0


def test_fetch_model_before_fit():
    est = MaximumLikelihoodCF1SRM()
    assert_(not est.has_model)
    assert_(est.fetch_model() is None)


@pytest.mark.filterwarnings("ignore::phfit.util.exceptions.NotConvergedWarning")
def test_fit_cf1srm(data):
    models = fit_cf1srm(data, phases=[1, 2, 3], selection=None, maxiter=100)
    assert_equal([m.n_phases for m in models], [1, 2, 3])
    best = fit_cf1srm(data, phases=[1, 2, 3], maxiter=100)
    assert_allclose(best.aic, min(m.aic for m in models))

    as_mapping = {"time": data.time, "fault": data.fault, "type": data.type}
    single = fit_cf1srm(as_mapping, phases=1)
    assert_equal(single.n_phases, 1)


@pytest.mark.filterwarnings("ignore::phfit.util.exceptions.NotConvergedWarning")
def test_fit_cf1srm_skips_failures(data, caplog):
    models = fit_cf1srm(data, phases=[0, 1], selection=None, maxiter=20)
    assert_equal(len(models), 1)
    assert_(any("Skipping cf0" in record.getMessage() for record in caplog.records))
    with assert_raises(PhaseTypeError):
        fit_cf1srm(data, phases=[0, -1])
    with assert_raises(ValueError):
        fit_cf1srm(data, phases=[1], selection="BIC")


def test_fit_fetch(data):
    model = MaximumLikelihoodCF1SRM(n_phases=1).fit_fetch(data)
    assert_(isinstance(model, CF1SRM))
    assert_array_equal(model.cf1.rate, model.rate)
    assert_allclose(model.cf1.mean, 1. / model.rate[0])


def test_progress_bar_interface(data):
    class IncompleteBar:
        def __init__(self, total=None):
            self.n = 0

    with assert_raises(TypeError):
        MaximumLikelihoodCF1SRM(n_phases=1, maxiter=2, progress=IncompleteBar).fit(data)
