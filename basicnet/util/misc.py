"""
Utility functions which don't quite fit anywhere else.
"""
from __future__ import division

import collections.abc

import numpy as np

from ..nnets import errors
from ..util import netlog
log = netlog.setup_logging("nnets_misc", level="INFO")


def get_rng(rng=None):
    """Turn the input into a `np.random.RandomState`.

    `rng` may be None (fresh, randomly seeded generator), an integer seed,
    an existing RandomState (returned unchanged), or the tuple produced by
    `RandomState.get_state()`.
    """
    if rng is None:
        log.debug("Making a new RNG.")
        rng = np.random.RandomState()
    elif isinstance(rng, np.random.RandomState):
        pass
    elif isinstance(rng, (int, np.integer)):
        log.debug("Setting RNG seed to {}.".format(rng))
        rng = np.random.RandomState(rng)
    else:
        # Assume that anything else is the state of the RNG.
        log.debug("Initializing numpy RNG from previous state.")
        rng_state = rng
        rng = np.random.RandomState()
        rng.set_state(rng_state)

    return rng


def check_finite(value, what="value", epoch=None):
    """Raise a `NonFiniteValue` if any element of `value` is NaN or infinite.
    Returns the input unchanged otherwise.
    """
    if not np.all(np.isfinite(value)):
        raise errors.NonFiniteValue("Non-finite {} encountered.".format(what), epoch=epoch)
    return value


def as_vector(x, what="input"):
    """Convert the input to a 1D float array. Row or column vectors are flattened;
    anything with more than one non-trivial dimension is rejected."""
    arr = np.asarray(x, dtype=np.float64)
    if arr.ndim > 1 and sum(dim > 1 for dim in arr.shape) > 1:
        raise errors.DimensionMismatch(expected="a vector", actual="shape {}".format(arr.shape),
                                       what=what)
    return arr.reshape(-1)


def as_list(x):
    """If an object is a string or non-iterable, returns it as a one-element list.
    Otherwise returns the object unchanged.
    """
    if isinstance(x, str) or not isinstance(x, collections.abc.Iterable):
        x = [x]
    return x
