"""
This module defines activation functions which provide nonlinearities for neural networks.

Each activation is an immutable `Activation` record holding the function, its
derivative, and whether that derivative is computed from the function's own
output (sigmoid, tanh) or from the pre-activation values (relu, linear).
"""
from __future__ import division, print_function

import collections

import numpy as np

from ..util import netlog

log = netlog.setup_logging("nnets_activations", level="INFO")


# Inputs to `exp` are clipped to this magnitude so they can't overflow a float64.
EXP_CLIP = 500.


_ActivationBase = collections.namedtuple("Activation", ["name", "func", "deriv",
                                                       "derivative_from_output", "vjp"])


class Activation(_ActivationBase):
    """A named elementwise nonlinearity.

    * `name` <str> : Standardized name of this activation
    * `func` <function> : Maps an array of pre-activation values to outputs
    * `deriv` <function> : Derivative; takes the output if `derivative_from_output`,
        otherwise takes the pre-activation values
    * `derivative_from_output` <bool>
    * `vjp` <function|None> : Vector-Jacobian product for activations which are not
        elementwise (softmax). Called as `vjp(grad_output, output)`.
    """
    __slots__ = ()

    def apply(self, X):
        return self.func(np.asarray(X, dtype=np.float64))

    def derivative(self, pre_activation, output=None):
        """Elementwise derivative of this activation. Supply whichever of the
        pre-activation or the output the function needs (or both)."""
        if self.derivative_from_output:
            if output is None:
                output = self.apply(pre_activation)
            return self.deriv(output)
        return self.deriv(pre_activation)

    def backprop(self, grad_output, pre_activation, output):
        """Gradient of the loss with respect to the pre-activation values."""
        if self.vjp is not None:
            return self.vjp(grad_output, output)
        return grad_output * self.derivative(pre_activation, output)

    def __str__(self):
        return self.name


def standardize_activation_name(activation):
    """ If activation functions have more than one name, this function standardizes them.
    """
    activation = activation.lower()
    if activation in ["rec", "relu"]:
        activation = "relu"
    elif activation in ["sig", "sigmoid", "logistic"]:
        activation = "sigmoid"
    elif activation in ["linear", "identity", "none"]:
        activation = "linear"

    return activation


def get_activation_func(activation):
    """Turns a string activation function name into an `Activation`.
    `Activation` inputs are returned unchanged.
    """
    if isinstance(activation, Activation):
        return activation
    if not isinstance(activation, str):
        raise TypeError("Supply the activation as a string or an Activation, "
                        "not {}.".format(type(activation)))

    name = standardize_activation_name(activation)
    if name not in ACTIVATIONS:
        raise ValueError("Unrecognized activation: {}".format(activation))
    return ACTIVATIONS[name]


def _sigmoid(X):
    return 1. / (1. + np.exp(-np.clip(X, -EXP_CLIP, EXP_CLIP)))


def _sigmoid_deriv(Y):
    return Y * (1. - Y)


def _tanh_deriv(Y):
    return 1. - Y ** 2


def rectify(X):
    """Rectified linear activation function to provide non-linearity for NNs.
    Faster implementation using abs() suggested by Lasagne.
    """
    return (X + np.abs(X)) / 2


def _rectify_deriv(X):
    return (X > 0).astype(np.float64)


def linear(X):
    return X


def _linear_deriv(X):
    return np.ones_like(X)


def softmax(X):
    """Numerically stable softmax over the last axis."""
    e_x = np.exp(np.clip(X - X.max(axis=-1, keepdims=True), -EXP_CLIP, 0))
    return e_x / e_x.sum(axis=-1, keepdims=True)


def _softmax_vjp(grad_output, Y):
    # The softmax Jacobian is diag(y) - y y^T.
    return Y * (grad_output - np.sum(grad_output * Y, axis=-1, keepdims=True))


sigmoid = Activation("sigmoid", _sigmoid, _sigmoid_deriv, True, None)
tanh = Activation("tanh", np.tanh, _tanh_deriv, True, None)
relu = Activation("relu", rectify, _rectify_deriv, False, None)
identity = Activation("linear", linear, _linear_deriv, False, None)
# The elementwise "derivative" of softmax is the diagonal of its Jacobian.
softmax_activation = Activation("softmax", softmax, _sigmoid_deriv, True, _softmax_vjp)

ACTIVATIONS = {act.name: act for act in [sigmoid, tanh, relu, identity, softmax_activation]}


get_activation = get_activation_func
