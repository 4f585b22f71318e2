"""
This module reads and iterates over data, making it available for training.
"""
from __future__ import division

import collections

import numpy as np
import pandas as pd

from ..data import files
from ..nnets import errors
from ..util import misc
from ..util import netlog
log = netlog.setup_logging("data_readers", level="INFO")


TrainingExample = collections.namedtuple("TrainingExample", ["input", "target"])


def as_examples(data, n_in=None, n_out=None):
    """Turn training data into a list of `TrainingExample`s of float vectors.

    **Parameters**

    * `data`
        A list of `TrainingExample`s or (input, target) pairs,
        a 2-tuple of (2D array of inputs, array of targets), or a `Data` object.
        In the 2-tuple, either entry may also be a list with one row per example.
        A tuple is always read as (inputs, targets); pass examples in a list.

    **Optional Parameters**

    * `n_in`, `n_out` <int|None>
        If given, every input (target) must have exactly this many values.

    **Raises**

    `DimensionMismatch` if an example doesn't have the expected number of values.
    """
    if isinstance(data, Data):
        data = (data.features, data.targets)
    if isinstance(data, tuple) and len(data) == 2 and _is_table(data[0]) \
            and isinstance(data[1], (np.ndarray, pd.DataFrame, pd.Series, list)):
        features, targets = _to_array(data[0], "features"), _to_array(data[1], "targets")
        if len(features) != len(targets):
            raise ValueError("The features have {} rows, but the targets have {} "
                             "rows.".format(len(features), len(targets)))
        data = zip(features, targets)

    examples = []
    for item in data:
        try:
            inp, target = item
        except (TypeError, ValueError):
            raise TypeError("Each training example must be a pair of (input, target), "
                            "not {}.".format(item))
        example = TrainingExample(misc.as_vector(inp, what="input"),
                                  misc.as_vector(target, what="target"))
        if n_in is not None and example.input.size != n_in:
            raise errors.DimensionMismatch(expected=n_in, actual=example.input.size,
                                           what="input of example {}".format(len(examples)))
        if n_out is not None and example.target.size != n_out:
            raise errors.DimensionMismatch(expected=n_out, actual=example.target.size,
                                           what="target of example {}".format(len(examples)))
        examples.append(example)

    return examples


def _is_table(features):
    """2D arrays, DataFrames, and lists of equal-length rows of numbers hold one
    example per row."""
    if isinstance(features, pd.DataFrame):
        return True
    if isinstance(features, np.ndarray):
        return features.ndim == 2
    if isinstance(features, list) and len(features) > 0:
        rows_ok = all((isinstance(row, np.ndarray) and row.ndim == 1)
                      or (isinstance(row, list) and all(np.isscalar(v) for v in row))
                      for row in features)
        return rows_ok and len(set(len(row) for row in features)) == 1
    return False


def _to_array(src, what):
    """Arrays, DataFrames, and the names of pickle files all become 2D float arrays."""
    if isinstance(src, str):
        if files.get_file_type(src) != "pkl":
            raise TypeError("Could not figure out what to do with data source {}.".format(src))
        src = files.read_pickle(src)
    if isinstance(src, (pd.DataFrame, pd.Series)):
        src = src.values
    arr = np.asarray(src, dtype=np.float64)
    if arr.ndim == 1:
        arr = arr[:, np.newaxis]
    if arr.ndim != 2:
        raise ValueError("The {} must be a 2D array with one example per row, "
                         "not shape {}.".format(what, arr.shape))
    return arr


class Data(object):
    """
    Holds features and targets in memory and iterates over them in batches.

    **Parameters**

    * `features` <ndarray|DataFrame|str>
        One example per row, or the file name of a pickle holding such an array
    * `targets` <ndarray|DataFrame|str|None>
        As `features`, with the same number of rows

    **Optional Parameters**

    * `batch_size` <int|1>
    * `shuffle` <bool|False>
        Visit the rows in a new random order on every call to `iter_epoch`.
    * `rng` <int|RandomState|None>
        Source of the random order
    * `allow_partial_batch` <bool|True>
        If False, drop the rows which don't fill a final batch.
    """
    def __init__(self, features, targets=None, batch_size=1, shuffle=False, rng=None,
                 allow_partial_batch=True):
        if batch_size is None or batch_size < 1:
            raise ValueError("The batch size must be a positive integer.")
        self.batch_size = int(batch_size)
        self.shuffle = shuffle
        self.rng = misc.get_rng(rng)
        self.allow_partial_batch = allow_partial_batch

        self.features = _to_array(features, "features")
        self.targets = None if targets is None else _to_array(targets, "targets")
        if self.targets is not None and len(self.features) != len(self.targets):
            raise ValueError("The features have {} rows, but the targets have {} "
                             "rows.".format(len(self.features), len(self.targets)))
        self.n_epochs = 0

    def __len__(self):
        return len(self.features)

    def iter_epoch(self):
        """Iterate through the data represented by this object.

        **Yields**

        A 2-tuple minibatch of (features, targets) if this object holds targets, else
        a minibatch of features.
        """
        order = np.arange(len(self))
        if self.shuffle:
            order = self.rng.permutation(order)
        stop = len(order)
        if not self.allow_partial_batch:
            stop -= stop % self.batch_size

        for i_start in range(0, stop, self.batch_size):
            rows = order[i_start: min([i_start + self.batch_size, stop])]
            if self.targets is None:
                yield self.features[rows]
            else:
                yield self.features[rows], self.targets[rows]
        self.n_epochs += 1

    def peek(self):
        """Return the first batch of data, without advancing the epoch count
        or the shuffling RNG."""
        rows = np.arange(min([self.batch_size, len(self)]))
        if self.targets is None:
            return self.features[rows]
        return self.features[rows], self.targets[rows]


def read_csv(fname, n_targets=1, **kwargs):
    """Read a table of training data with pandas. Each row is one example;
    the last `n_targets` columns are the targets and the rest are features.
    Extra keyword arguments go to `pandas.read_csv`.

    **Returns**

    A `Data` object
    """
    df = pd.read_csv(fname, **kwargs)
    if not 0 < n_targets < df.shape[1]:
        raise ValueError("Can't take {} target columns from a table with {} "
                         "columns.".format(n_targets, df.shape[1]))
    log.debug("Read {} rows and {} columns from {}.".format(df.shape[0], df.shape[1], fname))

    return Data(df.iloc[:, :-n_targets], df.iloc[:, -n_targets:])
