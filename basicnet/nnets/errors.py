"""
Exceptions raised by the neural network code.
"""


class NetworkError(Exception):
    """Base class for all errors raised by basicnet."""


class DimensionMismatch(NetworkError, ValueError):
    """The length of an input, target, or parameter array doesn't match the
    layer or network it was handed to. Raised where the mismatch is first
    detected; arrays are never truncated or padded to fit.
    """
    def __init__(self, expected=None, actual=None, what="input", message=None):
        self.expected = expected
        self.actual = actual
        self.what = what
        if message is None:
            message = "Expected {} value(s) for {} but got {}.".format(expected, what, actual)
        super(DimensionMismatch, self).__init__(message)


class NoForwardState(NetworkError, RuntimeError):
    """`backward` was called without the state from a matching `forward` call."""


class NonFiniteValue(NetworkError, FloatingPointError):
    """A loss, gradient, or parameter became NaN or infinite.

    `epoch` is the epoch in which the value appeared (if known), and `loss` the
    last finite loss seen before it.
    """
    def __init__(self, message, epoch=None, loss=None):
        self.epoch = epoch
        self.loss = loss
        super(NonFiniteValue, self).__init__(message)


class SerializationError(NetworkError, ValueError):
    """A stored network is malformed or internally inconsistent."""
