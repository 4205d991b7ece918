# pytest specific configuration file containing eg fixtures.
import os
import random

import numpy as np
import pytest


@pytest.fixture
def fixed_seed():
    random.seed(42)
    np.random.mtrand.seed(42)
    yield
    new_seed = int.from_bytes(os.urandom(16), 'big') % (2 ** 32 - 1)
    random.seed(new_seed)
    np.random.mtrand.seed(new_seed)


def cf1_generator(rate):
    r""" Dense generator of the CF1 chain with the given rates. """
    rate = np.asarray(rate, dtype=float)
    return np.diag(-rate) + np.diag(rate[:-1], 1)


@pytest.fixture
def generator():
    return cf1_generator


@pytest.fixture(params=[
    ([1.], [3.]),
    ([.5, .5], [1., 2.]),
    ([.1, .2, .3, .4], [.5, .9, 1.7, 4.]),
    ([0., 0., 1.], [2., 2., 2.]),
], ids=lambda p: f"n={len(p[0])}")
def cf1_params(request):
    alpha, rate = request.param
    return np.array(alpha), np.array(rate)
