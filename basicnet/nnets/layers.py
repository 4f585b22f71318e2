"""
This module contains pieces of neural networks.

Each Layer class must define the following interface:

An instance must have the attributes
    * `n_in` : The expected length of an input vector
    * `n_out` : The length of the output vector
    * `name` : A string, unique within a network
    * `params` : A list of all trainable parameter arrays

The object must define the following functions:
    * `forward`, which takes an input vector and returns a `ForwardState`
    * `backward`, which takes the gradient of the loss with respect to the
        layer's output, plus the `ForwardState` from the matching `forward` call,
        and returns the gradient with respect to the layer's input along with
        a `LayerGradients` for the layer's own parameters
    * `apply_update`, the only function which modifies trainable parameters
    * `get_params`
    * `get_trainable_params`

Layers don't remember anything about the last input they saw. The
`ForwardState` returned by `forward` must be handed back to `backward`
by the caller, which makes it safe to call `forward` for prediction at any time.
"""
from __future__ import division, print_function

import collections

import numpy as np

from ..util import netlog
from ..nnets import activations as act
from ..nnets import errors
from ..util import misc


log = netlog.setup_logging("nnets_layers", level="INFO")


i_names = 0  # Counter to use for default layer names.


ForwardState = collections.namedtuple("ForwardState", ["input", "pre_activation", "output"])
LayerGradients = collections.namedtuple("LayerGradients", ["W", "b"])


def get_weight_init(activation, shape, n_in, n_out, rng):
    """Initialize weights of a NN layer.

    Initial weight distributions should be chosen such that gradients neither blow up
    nor vanish as one progresses through the layers. For rectified linear units,
    this derivation is in He et al. 2015 [1].

    Use the Xavier10 [2] suggested initialization for tanh and sigmoid activation functions.
    The Xavier paper suggests that initial weights be drawn from a uniform distribution between
    [sqrt(-6./(n_in+n_hidden)), sqrt(6./(n_in+n_hidden))] for a tanh activation function.
    For a logistic sigmoid, multiply this range by 4.

    [1] arXiv:1502.01852; http://arxiv.org/abs/1502.01852
    [2] http://machinelearning.wustl.edu/mlpapers/paper_files/AISTATS2010_GlorotB10.pdf
    """
    activation = act.get_activation_func(activation)  # Turn strings into functions.
    if activation is act.relu:
        # Use initialization recommended in He et al. 2015 for ReLU activations.
        W_values = np.asarray(rng.normal(loc=0, scale=np.sqrt(2 / n_in), size=shape),
                              dtype=np.float64)
    else:
        # Otherwise, use Xavier10 recomendations.
        if activation not in [act.tanh, act.sigmoid]:
            log.debug("Using tanh - optimized weight initialization for this {} "
                      "activation function.".format(activation))
        W_values = np.asarray(rng.uniform(low=-np.sqrt(6. / (n_in + n_out)),
                                          high=np.sqrt(6. / (n_in + n_out)),
                                          size=shape),
                              dtype=np.float64)
        if activation is act.sigmoid:
            W_values *= 4

    return W_values


def _as_size(n_in):
    """Layer sizes may be given as ints or as 1-tuples."""
    if getattr(n_in, "__len__", None) is not None:
        if len(n_in) != 1:
            raise TypeError("Fully-connected layers take 1D inputs, not shape {}.".format(n_in))
        n_in = n_in[0]
    return int(n_in)


class Layer(object):
    """
    This is a generic layer of a neural network.
    """
    def __init__(self, n_in, name=None, rng=None):
        self.name = name
        self.n_in = _as_size(n_in)

        if self.name is None:
            global i_names
            self.name = "lyr{}".format(i_names)
            i_names += 1

        # Initialize a random number generator, if not provided.
        if rng is None:
            log.debug("Making new Layer RNG in the {}".format(type(self)))
        self.rng = misc.get_rng(rng)

        # Must also define the following in the subclass's __init__:
        self.n_out = None
        self.params = []

    def forward(self, input):
        raise NotImplementedError

    def backward(self, grad_output, state):
        raise NotImplementedError

    def get_params(self):
        """Returns a dictionary of parameters required by this class's __init__.
        """
        return dict(n_in=self.n_in, name=self.name)

    def get_trainable_params(self):
        """Returns a dictionary of parameters (the contents of this class's `params` list)
        which can be inserted into this class's __init__.
        """
        return dict()

    def set_trainable_params(self, params):
        """Given a dictionary of parameter arrays (or another Layer), copy those values
        into this Layer's parameters. All shapes are checked before anything is copied.
        """
        if isinstance(params, Layer):
            # Allow setting trainable parameters directly from another Layer.
            params = params.get_trainable_params()

        new_values = {}
        for name, val in params.items():
            this_param = getattr(self, name)
            val = np.asarray(val, dtype=np.float64)
            if val.shape != this_param.shape:
                raise errors.DimensionMismatch(expected=this_param.shape, actual=val.shape,
                                               what="parameter {} of layer {}".format(name, self.name))
            new_values[name] = val

        for name, val in new_values.items():
            getattr(self, name)[...] = val

    @property
    def n_params(self):
        return int(sum(np.prod(param.shape) for param in self.params))

    def __getstate__(self):
        """Return a dictionary of this instance's contents suitable for pickling.
        """
        state = self.get_params()
        state["trainable_params"] = {name: np.array(val, copy=True)
                                     for name, val in self.get_trainable_params().items()}
        state["rng"] = self.rng.get_state()

        return state

    def __setstate__(self, state):
        """Set the state of this Layer from a dictionary created by `__getstate__`.
        """
        state = state.copy()
        trainable_params = state.pop("trainable_params")
        self.__init__(**state)

        self.set_trainable_params(trainable_params)  # Must be done after init.

    def __str__(self):
        return "{}: Neural network layer; input size = {}".format(self.name, self.n_in)


class FCLayer(Layer):
    def __init__(self, n_in, n_units, activation="sigmoid", W=None, b=None, **kwargs):
        """This is a typical hidden layer of a multi-layer perceptron:
        units are fully-connected and have nonlinear activation functions.
        The weight matrix W is of shape (n_units, n_in) and the bias
        vector b is of shape (n_units,).

        Unit activation will be given by: activation(dot(W, input) + b).

        **Parameters**

        * `n_in` <int>
            Dimensionality of input
        * `n_units` <int>
            Number of units in this layer

        **Optional Parameters**

        * `name` <str|None>
            A designation for this layer. Can be used to retrieve it later.
        * `activation` <str|"sigmoid">
            The activation function to use for this layer's outputs.
        * `W` <ndarray|None>
            Weights, shape (n_units, n_in); will be initialized randomly if `None`.
        * `b` <ndarray|None>
            Biases, shape (n_units,); will be initialized to zero if `None`.
        * `rng` <numpy.random.RandomState|int|None>
            A random number generator used to initialize the weights
        """
        super(FCLayer, self).__init__(n_in, **kwargs)
        n_units = _as_size(n_units)
        if n_units < 1 or self.n_in < 1:
            raise ValueError("Layer {} needs at least one input and one unit, not "
                             "{} and {}.".format(self.name, self.n_in, n_units))
        self.n_units = n_units
        self.n_out = n_units
        self.activation = act.get_activation_func(activation)  # Turn strings into functions.

        if W is None:
            W = get_weight_init(self.activation, (n_units, self.n_in), self.n_in, n_units, self.rng)
        if b is None:
            b = np.zeros((n_units,), dtype=np.float64)
        W = np.array(W, dtype=np.float64)
        b = np.array(b, dtype=np.float64).reshape(-1)
        if W.shape != (n_units, self.n_in):
            raise errors.DimensionMismatch(expected=(n_units, self.n_in), actual=W.shape,
                                           what="weights of layer {}".format(self.name))
        if b.shape != (n_units,):
            raise errors.DimensionMismatch(expected=n_units, actual=b.size,
                                           what="biases of layer {}".format(self.name))

        self.W = W
        self.b = b

        # Velocities for momentum updates. These aren't trainable parameters.
        self.velocity_W = np.zeros_like(self.W)
        self.velocity_b = np.zeros_like(self.b)

        # Store the parameters of the model.
        self.params = [self.W, self.b]

    def forward(self, input):
        """Compute this layer's output for a single input vector.

        **Returns**

        A `ForwardState` of (input, pre-activation values, output).

        **Raises**

        `DimensionMismatch` if the input doesn't have `n_in` elements.
        """
        input = misc.as_vector(input, what="input of layer {}".format(self.name))
        if input.size != self.n_in:
            raise errors.DimensionMismatch(expected=self.n_in, actual=input.size,
                                           what="input of layer {}".format(self.name))
        pre_activation = self.W.dot(input) + self.b
        output = self.activation.apply(pre_activation)

        return ForwardState(input, pre_activation, output)

    def backward(self, grad_output, state, fused_delta=False):
        """Backpropagate a gradient through this layer. Doesn't modify the layer.

        **Parameters**

        * `grad_output` <ndarray>
            Gradient of the loss with respect to this layer's output
        * `state` <ForwardState>
            The value returned by the `forward` call which produced that output

        **Optional Parameters**

        * `fused_delta` <bool|False>
            If True, `grad_output` is already the gradient with respect to the
            pre-activation values (e.g. softmax combined with cross-entropy),
            and the activation derivative is skipped.

        **Returns**

        A 2-tuple of (gradient with respect to the input, `LayerGradients`)
        """
        if not isinstance(state, ForwardState):
            raise errors.NoForwardState("Layer {} needs the state from a forward pass "
                                        "before it can backpropagate.".format(self.name))
        if state.input.size != self.n_in or state.output.size != self.n_out:
            raise errors.NoForwardState("The forward state handed to layer {} came from a "
                                        "layer of a different shape.".format(self.name))
        grad_output = misc.as_vector(grad_output, what="gradient of layer {}".format(self.name))
        if grad_output.size != self.n_out:
            raise errors.DimensionMismatch(expected=self.n_out, actual=grad_output.size,
                                           what="output gradient of layer {}".format(self.name))

        if fused_delta:
            delta = grad_output
        else:
            delta = self.activation.backprop(grad_output, state.pre_activation, state.output)

        grads = LayerGradients(W=np.outer(delta, state.input), b=delta.copy())
        grad_input = self.W.T.dot(delta)

        return grad_input, grads

    def apply_update(self, grad_W, grad_b, learning_rate, momentum=0., nesterov=False):
        """Take one gradient descent step.

        Without momentum this is `W -= learning_rate * grad_W` (and the same for `b`).
        With momentum we keep a velocity for each parameter:
            v_t = mu * v_t-1 - lr * grad
            param_t = param_t-1 + v_t
        or, for Nesterov's accelerated gradient,
            param_t = param_t-1 + mu * v_t - lr * grad

        **Raises**

        `DimensionMismatch` if the gradients have the wrong shape, and
        `NonFiniteValue` if the step would leave NaN or infinite parameters.
        In either case the layer is left unchanged.
        """
        grad_W = np.asarray(grad_W, dtype=np.float64)
        grad_b = np.asarray(grad_b, dtype=np.float64).reshape(-1)
        if grad_W.shape != self.W.shape:
            raise errors.DimensionMismatch(expected=self.W.shape, actual=grad_W.shape,
                                           what="weight gradient of layer {}".format(self.name))
        if grad_b.shape != self.b.shape:
            raise errors.DimensionMismatch(expected=self.b.size, actual=grad_b.size,
                                           what="bias gradient of layer {}".format(self.name))

        if momentum:
            velocity_W = momentum * self.velocity_W - learning_rate * grad_W
            velocity_b = momentum * self.velocity_b - learning_rate * grad_b
            if nesterov:
                new_W = self.W + momentum * velocity_W - learning_rate * grad_W
                new_b = self.b + momentum * velocity_b - learning_rate * grad_b
            else:
                new_W = self.W + velocity_W
                new_b = self.b + velocity_b
        else:
            velocity_W, velocity_b = self.velocity_W, self.velocity_b
            new_W = self.W - learning_rate * grad_W
            new_b = self.b - learning_rate * grad_b

        misc.check_finite(new_W, "weights in layer {}".format(self.name))
        misc.check_finite(new_b, "biases in layer {}".format(self.name))

        # Write in place, so that `self.params` keeps pointing at the live arrays.
        self.W[...] = new_W
        self.b[...] = new_b
        self.velocity_W[...] = velocity_W
        self.velocity_b[...] = velocity_b

    def reset_velocity(self):
        self.velocity_W[...] = 0
        self.velocity_b[...] = 0

    def get_params(self):
        """Parameters required by __init__"""
        param_dict = super(FCLayer, self).get_params()
        param_dict.update(n_units=self.n_units, activation=self.activation.name)
        return param_dict

    def get_trainable_params(self):
        """Returns a dictionary of parameters which can be inserted into this class's __init__.
        """
        return dict(W=self.W, b=self.b)

    def __str__(self):
        return "{}: Fully-connected layer with {} neurons using {} activation;\n\t" \
               "FC layer input size = {}; output size = {}".\
            format(self.name, self.n_units, self.activation.name, self.n_in, self.n_out)
