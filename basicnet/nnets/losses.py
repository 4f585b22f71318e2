"""
Loss functions which compare a network's prediction to a target.

Every loss has an `evaluate(prediction, target)` method returning a 2-tuple of
(scalar loss, gradient of the loss with respect to the prediction). The gradient
is exactly what gets fed into the last layer's `backward`.

Losses which pair naturally with an output activation (cross-entropy with softmax,
binary cross-entropy with sigmoid) also define `delta`, the gradient with respect
to that layer's pre-activation values. The network uses it in place of chaining
the gradient through the activation when the pairing is present.
"""
from __future__ import division

import numpy as np

from ..nnets import errors
from ..util import netlog


log = netlog.setup_logging("nnets_losses", level="INFO")


# Keep probabilities away from 0 and 1 before taking logs.
EPSILON = 1e-12


def _check_shapes(prediction, target):
    prediction = np.asarray(prediction, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)
    if prediction.shape != target.shape:
        raise errors.DimensionMismatch(expected=prediction.size, actual=target.size,
                                       what="target")
    return prediction, target


class Loss(object):
    name = None
    fused_activation = None  # Name of the output activation whose derivative `delta` absorbs.

    def evaluate(self, prediction, target):
        raise NotImplementedError

    def __call__(self, prediction, target):
        return self.evaluate(prediction, target)[0]

    def delta(self, prediction, target):
        raise NotImplementedError("The {} loss has no fused gradient.".format(self.name))

    def __str__(self):
        return self.name


class MeanSquaredError(Loss):
    """loss = mean((p - t)^2), gradient = 2 (p - t) / n"""
    name = "mse"

    def evaluate(self, prediction, target):
        prediction, target = _check_shapes(prediction, target)
        diff = prediction - target
        return float(np.mean(diff ** 2)), 2 * diff / diff.size


class CrossEntropy(Loss):
    """Categorical cross-entropy, -sum(t log p), for targets which are probability
    distributions (e.g. one-hot labels) and softmax outputs.
    """
    name = "cross_entropy"
    fused_activation = "softmax"

    def evaluate(self, prediction, target):
        prediction, target = _check_shapes(prediction, target)
        p = np.clip(prediction, EPSILON, 1.)
        return float(-np.sum(target * np.log(p))), -target / p

    def delta(self, prediction, target):
        prediction, target = _check_shapes(prediction, target)
        return prediction - target


class BinaryCrossEntropy(Loss):
    """Mean binary cross-entropy for independent 0/1 targets and sigmoid outputs."""
    name = "binary_cross_entropy"
    fused_activation = "sigmoid"

    def evaluate(self, prediction, target):
        prediction, target = _check_shapes(prediction, target)
        p = np.clip(prediction, EPSILON, 1. - EPSILON)
        loss = -np.mean(target * np.log(p) + (1 - target) * np.log(1 - p))
        grad = (p - target) / (p * (1 - p)) / p.size
        return float(loss), grad

    def delta(self, prediction, target):
        prediction, target = _check_shapes(prediction, target)
        return (prediction - target) / prediction.size


mse = MeanSquaredError()
cross_entropy = CrossEntropy()
binary_cross_entropy = BinaryCrossEntropy()


def get_loss(loss):
    """Turn a loss name into a `Loss` object. `Loss` inputs are returned unchanged."""
    if isinstance(loss, Loss):
        return loss
    if not isinstance(loss, str):
        raise TypeError("Supply the loss as a string or a Loss, not {}.".format(type(loss)))

    name = loss.lower().replace("-", "_").replace(" ", "_")
    if name in ["mse", "squared", "mean_squared_error"]:
        return mse
    elif name in ["cross_entropy", "nll", "negative_log_likelihood", "categorical_cross_entropy"]:
        return cross_entropy
    elif name in ["binary_cross_entropy", "bce"]:
        return binary_cross_entropy
    else:
        raise ValueError("Unrecognized loss function: \"{}\".".format(loss))
