"""File interactions utilities for basicnet.

Networks are stored in two ways:

* As a JSON model store (`serialize`, `save_model`), which holds only the topology,
  activations, and parameters of a network, with the weight matrices written
  row-major. Any program can read it back.
* As a gzipped pickle checkpoint (`checkpoint_write`), which stores the entire
  network and trainer state so that training can be resumed.
"""
from __future__ import division, print_function

from datetime import datetime
import errno
import gzip
import json
import os
import pickle
import time

import numpy as np

from ..nnets import activations
from ..nnets.errors import SerializationError
from ..util import netlog
log = netlog.setup_logging("nnets_files", level="INFO")


MODEL_STORE_VERSION = "1.0"
LAYER_FIELDS = ["name", "activation", "rows", "cols", "weights", "biases"]


class CheckpointError(IOError):
    pass


def get_file_type(fname):
    """Attempts to infer the file type by reading the extension.

    **Returns**

    String, one of ["pkl", "json", "csv"]

    **Raises**

    `TypeError` if the file type is unrecognized.
    """
    tokens = fname.split(".")
    for token in tokens[::-1]:
        if token in ["pkl", "pickle"]:
            return "pkl"
        elif token in ["json"]:
            return "json"
        elif token in ["csv"]:
            return "csv"
    else:
        raise TypeError("Unrecognized file type: \"{}\".".format(fname))


def _opener(fname):
    return gzip.open if (fname.endswith("gz") or fname.endswith("gzip")) else open


def tolerant_makedirs(dirname):
    """This is a wrapper around os.makedirs which will quietly continue without doing anything
    if the specified `dirname` is actually a filename or is an existing directory.
    """
    try:
        os.makedirs(dirname)
    except (IOError, OSError) as e:
        # We get this if the directory exists already, or there's only a filename.
        if e.errno in [errno.ENOENT, errno.EEXIST]:
            pass
        else:
            raise


def read_pickle(fname, **kwargs):
    """Wrapper for pickle.load which will open and close your file for you.
        If the filename ends with "gz" or "gzip" we'll try to read the pickle
        as a gzip file.
    """
    with _opener(fname)(fname, "rb") as fin:
        contents = pickle.load(fin, **kwargs)

    return contents


def parse_checkpoint(checkpoint):
    """ Figure out if we want to checkpoint to a single file or to a series of files.
    Assign a default base name if we only got a directory.

    **Returns**

    A 2-tuple of (directory name [str], file name or basename [str])
    """
    if checkpoint is None:
        return None, None
    checkpoint_dir = os.path.dirname(checkpoint)
    checkpoint_fname = os.path.basename(checkpoint)
    if not checkpoint_fname:
        checkpoint_fname = "{}_checkpoint".format(datetime.strftime(datetime.now(), "%Y%m%d"))
    checkpoint_fname = checkpoint_fname.split(".")[0]  # Remove filename extensions.

    return checkpoint_dir, checkpoint_fname


def checkpoint_write(net, trainer, filename, extra_metadata=None):
    """Checkpoint model training. Stores everything necessary to resume later (except for data).
    """
    tolerant_makedirs(os.path.split(filename)[0])

    with _opener(filename)(filename, "wb") as fout:
        # Store metadata about the model type and the model parameters.
        log.debug("Checkpointing to \"{}\".".format(filename))
        metadata = dict(model_store_version="3.0",
                        model_name=getattr(net, "name", None),
                        model_type=type(net),
                        log=log.debug_global.getvalue(),
                        utc_time=time.asctime(time.gmtime()))

        if extra_metadata is not None:
            metadata.update(extra_metadata)

        pickle.dump(metadata, fout)
        pickle.dump(net, fout)
        pickle.dump(trainer, fout)


def checkpoint_read(filename, get_metadata=False):
    """Reads a model checkpoint of V3.0 or higher. The returned network
    has its trainer attached.

    **Raises**

    `CheckpointError` if the file isn't a checkpoint.
    """
    with _opener(filename)(filename, "rb") as fin:
        # Recover metadata, assumed to be a dictionary.
        try:
            metadata = pickle.load(fin)
        except (pickle.UnpicklingError, EOFError, OSError) as err:
            raise CheckpointError("Can't unpickle {}: {}".format(filename, err))

        if not isinstance(metadata, dict) or float(metadata.get("model_store_version", "0")) < 3:
            log.warning("Can't read file {} as a checkpoint.".format(filename))
            raise CheckpointError("This file does not look like a V3.0 or better checkpoint.")

        net = pickle.load(fin)
        net.trainer = pickle.load(fin)
    log.debug("Read checkpoint {} with metadata {}".format(filename, format_metadata(metadata)))

    if get_metadata:
        return net, metadata
    else:
        return net


def serialize(network):
    """Write the network as a JSON string. Floats are written with `repr` precision,
    so `deserialize(serialize(network))` reproduces every weight exactly.

    **Raises**

    `SerializationError` if any parameter is NaN or infinite.
    """
    store = {"model_store_version": MODEL_STORE_VERSION,
             "name": network.name,
             "n_in": network.n_in,
             "layers": [{"name": ly.name,
                         "activation": ly.activation.name,
                         "rows": ly.W.shape[0],
                         "cols": ly.W.shape[1],
                         "weights": ly.W.ravel(order="C").tolist(),
                         "biases": ly.b.tolist()}
                        for ly in network.layers]}
    try:
        return json.dumps(store, allow_nan=False)
    except ValueError as err:
        raise SerializationError("Can't store network \"{}\": {}".format(network.name, err))


def _check_size(value, what):
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise SerializationError("{} must be a positive integer, not {!r}.".format(what, value))
    return value


def _check_numbers(values, what):
    if not isinstance(values, list):
        raise SerializationError("{} must be a list of numbers.".format(what))
    try:
        arr = np.array(values, dtype=np.float64)
    except (TypeError, ValueError):
        raise SerializationError("{} must be a list of numbers.".format(what))
    if arr.ndim != 1 or not np.all(np.isfinite(arr)):
        raise SerializationError("{} must be a flat list of finite numbers.".format(what))
    return arr


def _parse_store(text):
    """Validate a JSON model store completely, without building anything.

    **Returns**

    A 3-tuple of (name, n_in, list of FCLayer keyword dictionaries)
    """
    try:
        store = json.loads(text)
    except (TypeError, ValueError) as err:
        raise SerializationError("Model store is not valid JSON: {}".format(err))
    if not isinstance(store, dict):
        raise SerializationError("A model store must be a JSON object.")
    for field in ["n_in", "layers"]:
        if field not in store:
            raise SerializationError("Model store is missing the \"{}\" field.".format(field))
    version = str(store.get("model_store_version", MODEL_STORE_VERSION))
    if version.split(".")[0] != MODEL_STORE_VERSION.split(".")[0]:
        raise SerializationError("Unable to read model store version {}.".format(version))

    n_in = _check_size(store["n_in"], "n_in")
    if not isinstance(store["layers"], list) or len(store["layers"]) == 0:
        raise SerializationError("A model store needs a non-empty list of layers.")

    layer_kwargs, prev_n_out = [], n_in
    for i_ly, ly in enumerate(store["layers"]):
        if not isinstance(ly, dict):
            raise SerializationError("Layer {} must be a JSON object.".format(i_ly))
        missing = [field for field in LAYER_FIELDS if field not in ly]
        if missing:
            raise SerializationError("Layer {} is missing the fields {}.".format(i_ly, missing))

        rows = _check_size(ly["rows"], "rows of layer {}".format(i_ly))
        cols = _check_size(ly["cols"], "cols of layer {}".format(i_ly))
        try:
            activation = activations.get_activation_func(ly["activation"])
        except (TypeError, ValueError) as err:
            raise SerializationError("Layer {}: {}".format(i_ly, err))
        weights = _check_numbers(ly["weights"], "weights of layer {}".format(i_ly))
        biases = _check_numbers(ly["biases"], "biases of layer {}".format(i_ly))

        if weights.size != rows * cols:
            raise SerializationError("Layer {} has {} weights, but rows * cols = {}.".format(
                i_ly, weights.size, rows * cols))
        if biases.size != rows:
            raise SerializationError("Layer {} has {} biases, but {} rows.".format(
                i_ly, biases.size, rows))
        if cols != prev_n_out:
            raise SerializationError("Layer {} takes {} inputs, but the layer before it "
                                     "has {} outputs.".format(i_ly, cols, prev_n_out))
        prev_n_out = rows

        layer_kwargs.append(dict(name=str(ly["name"]), n_units=rows, activation=activation,
                                 W=weights.reshape((rows, cols), order="C"), b=biases))
    names = [kw["name"] for kw in layer_kwargs]
    if len(set(names)) != len(names):
        raise SerializationError("Layer names must be unique; got {}.".format(names))

    return str(store.get("name", "Neural Network")), n_in, layer_kwargs


def deserialize(text, random_state=None):
    """Build a new `Network` from a JSON model store.

    **Raises**

    `SerializationError` if the store is malformed in any way. Nothing is
    built until the whole store has been validated.
    """
    from ..nnets import layers, nets

    name, n_in, layer_kwargs = _parse_store(text)
    layer_objs, prev_n_out = [], n_in
    for kwargs in layer_kwargs:
        layer_objs.append(layers.FCLayer(prev_n_out, rng=random_state, **kwargs))
        prev_n_out = kwargs["n_units"]

    return nets.Network(n_in, layer_objs, name=name, random_state=random_state)


def save_model(model, filename):
    """Saves the parameters of a network to a JSON model store.
    The file is gzipped if the filename ends in "gz".
    """
    tolerant_makedirs(os.path.split(filename)[0])

    text = serialize(model)
    with _opener(filename)(filename, "wt") as fout:
        fout.write(text)
    log.debug("Stored network \"{}\" in \"{}\".".format(model.name, filename))


def restore_model(filename, model=None):
    """Loads a network from a JSON model store.
    If a model is supplied, we copy the stored parameters into the input model.
    Otherwise, create a fresh model.

    **Returns**

    The network

    **Modifies**

    If supplied, the input `model` object will be altered so that its parameters contain the values
    stored in the specified file. It's left unchanged if the store doesn't match it.

    **Raises**

    `SerializationError` if the file is malformed or doesn't fit the supplied `model`.
    """
    with _opener(filename)(filename, "rt") as fin:
        text = fin.read()
    stored = deserialize(text)

    if model is None:
        return stored

    if stored.dimensions != model.dimensions:
        raise SerializationError("The input model has dimensions {}, but this model store "
                                 "has dimensions {}.".format(model.dimensions, stored.dimensions))
    for ly, stored_ly in zip(model.layers, stored.layers):
        if ly.activation.name != stored_ly.activation.name:
            raise SerializationError("Layer {} of the input model uses {} activation, but the "
                                     "stored layer uses {}.".format(ly.name, ly.activation.name,
                                                                    stored_ly.activation.name))
    model.set_trainable_params([stored_ly.get_trainable_params() for stored_ly in stored.layers])

    return model


def load_network_file(filename):
    """Read a network from a JSON model store, a checkpoint, or a plain pickle."""
    if get_file_type(filename) == "json":
        return restore_model(filename)
    try:
        return checkpoint_read(filename)
    except CheckpointError:
        log.debug("{} is not a checkpoint; reading it as a pickled network.".format(filename))
        return read_pickle(filename)


def format_metadata(metadata):
    """Metadata as a string for log output, without the bulky entries."""
    metacopy = metadata.copy()
    for key in ["log", "train_loss"]:
        if key in metacopy:
            del metacopy[key]
    metastr = """{}""".format(str(metacopy))

    return metastr


