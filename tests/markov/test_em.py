import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_raises, assert_equal, assert_, assert_array_equal
from scipy.special import gammaln

from phfit.markov import cf1emstep, emstep, FaultData, sample, cdf, pdf
from phfit.util.exceptions import DomainError, NumericalError

TRUE_ALPHA = np.array([.2, .3, .5])
TRUE_RATE = np.array([.2, .5, 1.])
HORIZON = 15.


@pytest.fixture(scope="module")
def detection_times():
    samples = sample(80, TRUE_ALPHA, TRUE_RATE, random_state=np.random.RandomState(42))
    return np.sort(samples[samples <= HORIZON])


@pytest.fixture(scope="module")
def exact_data(detection_times):
    intervals = np.diff(detection_times, prepend=0.)
    return FaultData.from_interfailure_times(intervals, te=HORIZON - detection_times[-1])


@pytest.fixture(scope="module")
def grouped_data(detection_times):
    counts, _ = np.histogram(detection_times, bins=np.arange(0., HORIZON + 1.))
    return FaultData.from_counts(counts)


@pytest.fixture(params=["exact", "grouped"])
def fault_data(request, exact_data, grouped_data):
    return exact_data if request.param == "exact" else grouped_data


def _reference_llf(omega, alpha, rate, data):
    t = data.cumulative_time
    survival = np.concatenate(([1.], cdf(t, alpha, rate, lower=False)))
    density = pdf(t, alpha, rate)
    llf = 0.
    for k in range(data.n_records):
        x = data.fault[k]
        if x > 0:
            llf += x * np.log(omega * (survival[k] - survival[k + 1])) - gammaln(x + 1)
        if data.type[k] == 1:
            llf += np.log(omega * density[k])
    return llf - omega * (1. - survival[-1])


def test_exponential_exact_closed_form(exact_data):
    omega, lam = 70., .3
    result = cf1emstep(omega, [1.], [lam], exact_data.time, exact_data.fault, exact_data.type)
    t = exact_data.cumulative_time
    tK = t[-1]
    detected = t[exact_data.type == 1]
    survival = np.exp(-lam * tK)
    expected_omega = len(detected) + omega * survival
    expected_rate = expected_omega / (detected.sum() + omega * survival * (tK + 1. / lam))
    expected_llf = np.sum(np.log(omega * lam) - lam * detected) - omega * (1. - survival)
    assert_allclose(result.omega, expected_omega, rtol=1e-7)
    assert_allclose(result.rate, [expected_rate], rtol=1e-6)
    assert_allclose(result.alpha, [1.])
    assert_allclose(result.llf, expected_llf, rtol=1e-7)


def test_exponential_grouped_closed_form(grouped_data):
    omega, lam = 70., .3
    result = cf1emstep(omega, [1.], [lam], grouped_data.time, grouped_data.fault, grouped_data.type)
    b = grouped_data.cumulative_time
    a = b - grouped_data.time
    sa, sb = np.exp(-lam * a), np.exp(-lam * b)
    conditional_mean = 1. / lam + (a * sa - b * sb) / (sa - sb)
    tK = b[-1]
    expected_omega = grouped_data.total + omega * sb[-1]
    expected_rate = expected_omega / (grouped_data.fault @ conditional_mean + omega * sb[-1] * (tK + 1. / lam))
    assert_allclose(result.omega, expected_omega, rtol=1e-7)
    assert_allclose(result.rate, [expected_rate], rtol=1e-6)


def test_llf_against_reference(fault_data):
    omega, alpha, rate = 60., np.array([.4, .1, .5]), np.array([.3, .6, 2.])
    result = cf1emstep(omega, alpha, rate, fault_data.time, fault_data.fault, fault_data.type)
    assert_allclose(result.llf, _reference_llf(omega, alpha, rate, fault_data), rtol=1e-6)


def test_mixed_records():
    data = FaultData(time=[1., .5, 2., 0., 3.], fault=[2, 0, 1, 0, 0], type=[0, 1, 1, 1, 0])
    omega, alpha, rate = 8., np.array([.5, .5]), np.array([.4, 1.5])
    result = cf1emstep(omega, alpha, rate, data.time, data.fault, data.type)
    assert_allclose(result.llf, _reference_llf(omega, alpha, rate, data), rtol=1e-6)
    survival = cdf([data.max_time], alpha, rate, lower=False)[0]
    assert_allclose(result.omega, data.total + omega * survival, rtol=1e-7)
    assert_allclose(result.alpha.sum(), 1.)
    assert_(np.all(result.rate > 0))


@pytest.mark.parametrize("n_phases", [2, 3, 5])
def test_monotone_ascent(fault_data, n_phases):
    params = {"omega": 1.2 * fault_data.total, "alpha": np.full(n_phases, 1. / n_phases),
              "rate": np.linspace(.5, 2., num=n_phases)}
    likelihoods = []
    for _ in range(25):
        result = emstep(params, fault_data)
        likelihoods.append(result["llf"])
        params = result["param"]
    likelihoods = np.array(likelihoods)
    assert_(np.all(np.diff(likelihoods) >= -1e-6 * np.abs(likelihoods[1:])))
    assert_(likelihoods[-1] > likelihoods[0])


def test_emstep_result(exact_data):
    params = {"omega": 50., "alpha": np.array([.3, .3, .4]), "rate": np.array([1., .5, 2.])}
    result = emstep(params, exact_data)
    assert_equal(set(result.keys()), {"param", "pdiff", "llf", "total"})
    param = result["param"]
    assert_(np.all(np.diff(param["rate"]) >= 0))
    assert_allclose(param["alpha"].sum(), 1.)
    assert_allclose(result["pdiff"]["omega"], param["omega"] - 50.)
    assert_allclose(result["pdiff"]["rate"], param["rate"] - params["rate"])
    assert_equal(result["total"], param["omega"])
    # input parameters are not modified
    assert_array_equal(params["rate"], [1., .5, 2.])
    assert_array_equal(params["alpha"], [.3, .3, .4])


def test_emstep_mapping_data(grouped_data):
    params = {"omega": 50., "alpha": np.array([.5, .5]), "rate": np.array([.5, 1.])}
    as_mapping = {"time": grouped_data.time, "fault": grouped_data.fault, "type": grouped_data.type}
    r1 = emstep(params, grouped_data)
    r2 = emstep(params, as_mapping)
    assert_allclose(r1["llf"], r2["llf"])
    assert_allclose(r1["param"]["rate"], r2["param"]["rate"])


def test_llf_invariant_under_canonicalization(grouped_data):
    data = grouped_data
    r1 = cf1emstep(40., [.3, .7], [5., 1.], data.time, data.fault, data.type)
    r2 = cf1emstep(40., [.86, .14], [1., 5.], data.time, data.fault, data.type)
    assert_allclose(r1.llf, r2.llf, rtol=1e-7)


def test_invalid_parameters(grouped_data):
    d = grouped_data
    with assert_raises(DomainError):
        cf1emstep(0., [1.], [1.], d.time, d.fault, d.type)
    with assert_raises(DomainError):
        cf1emstep(10., [.5, .4], [1., 2.], d.time, d.fault, d.type)
    with assert_raises(DomainError):
        cf1emstep(10., [1.], [-1.], d.time, d.fault, d.type)
    with assert_raises(DomainError):
        cf1emstep(10., [1.], [1.], [1., -1.], [0, 0], [0, 0])
    with assert_raises(DomainError):
        cf1emstep(10., [1.], [1.], [1., 1.], [0, 0], [0, 2])
    with assert_raises(DomainError):
        cf1emstep(10., [1.], [1.], d.time, d.fault, d.type, ufactor=1.)
    with assert_raises(DomainError):
        emstep({"omega": 10., "alpha": [1.], "rate": [1.]}, [1., 2.])
    # alpha and rate must be vectors of equal length
    with assert_raises(DomainError):
        cf1emstep(10., [.5, .5], [1., 2., 3.], [1.], [1], [0])
    with assert_raises(DomainError):
        cf1emstep(10., [[.5, .5]], [1., 2.], [1.], [1], [0])
    # fault counts must be integers
    with assert_raises(DomainError):
        cf1emstep(10., [1.], [1.], [1., 1.], [1., 0.], [0, 0])
    with assert_raises(DomainError):
        cf1emstep(10., [1.], [1.], [[1., 1.]], [[1, 0]], [[0, 0]])


def test_degenerate_interval():
    # a fault inside of an interval of zero length has probability zero
    with assert_raises(NumericalError):
        cf1emstep(10., [1.], [1.], [0., 1.], [1, 0], [0, 0])


def test_unreachable_phase():
    # the first phase is never entered, so its expected sojourn time vanishes
    with pytest.raises(NumericalError, match="sojourn"):
        cf1emstep(10., [0., 1.], [1., 2.], [1., 1.], [2, 1], [0, 0])
