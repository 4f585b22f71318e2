"""This module describes fully-functioning networks created from the pieces in `layers`.
"""
from __future__ import division, print_function

import copy

import numpy as np

from ..nnets import errors
from ..nnets import layers
from ..nnets import losses
from ..util import misc
from ..util import netlog


log = netlog.setup_logging("nets", level="INFO")


def define_mlp(n_out, n_hidden, activation="sigmoid", output_activation=None):
    """Shortcut to create the layer definitions of a multi-layer perceptron

    Parameters
    ----------
    n_out : int
        Number of output units
    n_hidden : int or list of ints
        Number of units in each hidden layer
    activation : {"sigmoid", "tanh", "relu", "linear"}
        Activation function to use for all hidden layers
    output_activation : str, optional
        Activation function for the output layer. Defaults to `activation`.

    Returns
    -------
    list
        Layer definitions suitable for input to a `Network`

    Examples
    --------
    >>> layers = define_mlp(10, [400, 400], "relu", output_activation="softmax")
    >>> print(layers)
    [['FCLayer', {'activation': 'relu', 'n_units': 400, 'name': 'fc0'}],
     ['FCLayer', {'activation': 'relu', 'n_units': 400, 'name': 'fc1'}],
     ['FCLayer', {'activation': 'softmax', 'n_units': 10, 'name': 'output'}]]
    """
    try:
        # Make sure that `n_hidden` is a list.
        len(n_hidden)
    except TypeError:
        n_hidden = [n_hidden]
    if output_activation is None:
        output_activation = activation

    layer_defs = []
    for i_hidden, hidden in enumerate(n_hidden):
        layer_defs.append(["FCLayer", {"name": "fc{}".format(i_hidden),
                                       "n_units": hidden, "activation": activation}])

    # Put on an output layer.
    layer_defs.append(["FCLayer", {"name": "output", "n_units": n_out,
                                   "activation": output_activation}])

    return layer_defs


class Network(object):
    r"""A feedforward neural network of fully-connected layers.

    The network is an ordered stack of `FCLayer` objects, in which each layer's
    input size is the previous layer's output size. The layer chain is checked
    once, at construction. This object can be pickled and unpickled; the entire
    state of the object will be stored.

    Parameters
    ----------
    n_in : int
        Length of the input vectors
    layer_defs : list
        Definition of the network layers. Each entry may be a 2-tuple of
        (n_units, activation), a list of ["FCLayer", {keyword arguments}],
        or an already-constructed `FCLayer`.
    name : str, optional
        Name of this neural network, for display purposes
    random_state : int or np.random.RandomState, optional
        RNG or seed for a RNG. If not supplied, will be randomly initialized.
        Used to initialize weights and by `merge` and `mutate`.

    Attributes
    ----------
    layers : list
        List of `Layer` objects, input side first
    n_out : int
        Length of the output vectors
    n_params : int
        Total number of individual trainable parameters
    trainer : training.SupervisedTraining
        Object used to train this network; present after calling `fit`

    Examples
    --------
    >>> net = Network(2, [(4, "tanh"), (1, "sigmoid")], name="XOR", random_state=42)
    >>> net.predict([0, 1]).shape
    (1,)
    """
    def __init__(self, n_in, layer_defs, name="Neural Network", random_state=None):
        self.trainer = None
        self.name = name
        self.layers = []

        if not isinstance(layer_defs, (list, tuple)):
            raise TypeError("Please input a list of layer definitions.")
        if len(layer_defs) == 0:
            raise ValueError("A network needs at least one layer.")
        self.layer_defs = [self._standardize_def(ly, i_ly) for i_ly, ly in enumerate(layer_defs)]

        self.rng = misc.get_rng(random_state)
        self.n_in = layers._as_size(n_in)

        self.layers = self._build_layers(self.n_in, self.layer_defs)
        self.n_out = self.layers[-1].n_out
        log.debug("This network has {} trainable parameters.".format(self.n_params))

    @classmethod
    def build(cls, n_in, n_out, n_hidden_layers=0, n_hidden=0, activation="sigmoid",
              random_state=None, name="Neural Network"):
        """Build a network in which every hidden layer has the same size and
        every layer (including the output) uses the same activation.

        Examples
        --------
        >>> net = Network.build(2, 1, n_hidden_layers=1, n_hidden=4)
        >>> net.dimensions
        [2, 4, 1]
        """
        return cls(n_in, define_mlp(n_out, n_hidden_layers * [n_hidden], activation),
                   name=name, random_state=random_state)

    @staticmethod
    def _standardize_def(layer_def, i_ly):
        """Turn each of the accepted kinds of layer definition into either a Layer
        or a ["FCLayer", {kwargs}] list."""
        if isinstance(layer_def, layers.Layer):
            return layer_def
        if isinstance(layer_def, (list, tuple)) and len(layer_def) > 0 \
                and isinstance(layer_def[0], str):
            layer_name = layer_def[0]
            if not layer_name.endswith("Layer"):
                # All class names end with "Layer".
                layer_name += "Layer"
            layer_kwargs = dict(layer_def[1]) if len(layer_def) > 1 else {}
            return [layer_name, layer_kwargs]
        if isinstance(layer_def, (list, tuple)) and len(layer_def) == 2:
            n_units, activation = layer_def
            return ["FCLayer", {"n_units": n_units, "activation": activation}]
        raise TypeError("Could not understand layer definition {}: {}.".format(i_ly, layer_def))

    def _build_layers(self, n_in, layer_defs):
        """Creates a stack of neural network layers from the input layer definitions.

        **Returns**

        A list of initialized neural network Layers.

        **Raises**

        `DimensionMismatch` if a supplied Layer doesn't fit onto the previous one.
        """
        log.debug("Building the \"{}\" network.".format(self.name))

        layer_objs = []
        prev_n_out = n_in
        for i_ly, ly in enumerate(layer_defs):
            if isinstance(ly, layers.Layer):
                # If this is already a Layer object, don't try to re-create it.
                this_layer = ly
                if this_layer.n_in != prev_n_out:
                    raise errors.DimensionMismatch(expected=prev_n_out, actual=this_layer.n_in,
                                                   what="input of layer {}".format(this_layer.name))
            else:
                layer_name, layer_kwargs = ly[0], ly[1].copy()
                layer_type = getattr(layers, layer_name, None)
                if layer_type is None:
                    raise ValueError("Unrecognized layer type: \"{}\".".format(layer_name))
                layer_kwargs.setdefault("name", "fc{}".format(i_ly)
                                        if i_ly < len(layer_defs) - 1 else "output")
                this_layer = layer_type(n_in=prev_n_out, rng=self.rng, **layer_kwargs)

            layer_objs.append(this_layer)
            log.debug("Added layer: {}".format(str(this_layer)))
            prev_n_out = this_layer.n_out

        names = [ly.name for ly in layer_objs]
        if len(set(names)) != len(names):
            raise ValueError("Layer names must be unique; got {}.".format(names))

        return layer_objs

    @property
    def n_params(self):
        return int(sum(ly.n_params for ly in self.layers))

    @property
    def dimensions(self):
        """Input size followed by the output size of every layer."""
        return [self.n_in] + [ly.n_out for ly in self.layers]

    def _check_input(self, input):
        input = misc.as_vector(input, what="input")
        if input.size != self.n_in:
            raise errors.DimensionMismatch(expected=self.n_in, actual=input.size, what="input")
        return input

    def _check_target(self, target):
        target = misc.as_vector(target, what="target")
        if target.size != self.n_out:
            raise errors.DimensionMismatch(expected=self.n_out, actual=target.size, what="target")
        return target

    def forward(self, input):
        """Run one input vector through every layer.

        Returns
        -------
        list of layers.ForwardState
            One state per layer, in layer order. The last state's `output`
            is the network's prediction.
        """
        prev_output = self._check_input(input)
        states = []
        for ly in self.layers:
            state = ly.forward(prev_output)
            states.append(state)
            prev_output = state.output
        return states

    def predict(self, input):
        """Compute the network's output.

        Parameters
        ----------
        input : array
            A single vector of length `n_in`, or a 2D array with one example per row

        Returns
        -------
        array
            A vector of length `n_out`, or a 2D array of (n_examples, n_out)
        """
        arr = np.asarray(input, dtype=np.float64)
        if arr.ndim == 2 and arr.shape[1] == self.n_in and arr.shape[0] != 1:
            outputs = [self.forward(row)[-1].output for row in arr]
            return np.array(outputs, dtype=np.float64).reshape(len(arr), self.n_out)
        return self.forward(arr)[-1].output

    def backward(self, grad_output, states, fused_delta=False):
        """Propagate a gradient backwards through the network.

        Parameters
        ----------
        grad_output : array
            Gradient of the loss with respect to the network output. If
            `fused_delta`, this is instead the gradient with respect to the last
            layer's pre-activation values.
        states : list of layers.ForwardState
            As returned by `forward`

        Returns
        -------
        list of layers.LayerGradients
            One entry per layer, in layer order
        """
        if len(states) != len(self.layers):
            raise errors.NoForwardState("Expected {} forward states, one per layer, but got "
                                        "{}.".format(len(self.layers), len(states)))
        grads = [None] * len(self.layers)
        grad = grad_output
        for i_ly in range(len(self.layers) - 1, -1, -1):
            grad, grads[i_ly] = self.layers[i_ly].backward(
                grad, states[i_ly], fused_delta=(fused_delta and i_ly == len(self.layers) - 1))
        return grads

    def compute_gradients(self, input, target, loss="mse"):
        """Forward and backward passes for a single example.

        Returns
        -------
        2-tuple of (loss value, list of layers.LayerGradients)
        """
        loss = losses.get_loss(loss)
        target = self._check_target(target)
        states = self.forward(input)
        prediction = states[-1].output
        loss_value, loss_grad = loss.evaluate(prediction, target)
        misc.check_finite(loss_value, "loss")

        if loss.fused_activation == self.layers[-1].activation.name:
            # The loss and the output activation have a combined derivative.
            grads = self.backward(loss.delta(prediction, target), states, fused_delta=True)
        else:
            grads = self.backward(loss_grad, states)
        for ly, grad in zip(self.layers, grads):
            misc.check_finite(grad.W, "weight gradient in layer {}".format(ly.name))
            misc.check_finite(grad.b, "bias gradient in layer {}".format(ly.name))

        return loss_value, grads

    def accumulate_gradients(self, examples, loss="mse"):
        """Sum the gradients from each example, then average them.
        Use this to apply one update for a mini-batch of examples.

        Parameters
        ----------
        examples : iterable of (input, target) pairs

        Returns
        -------
        2-tuple of (mean loss, list of averaged layers.LayerGradients)
        """
        total_loss, n_examples = 0., 0
        total_W = [np.zeros_like(ly.W) for ly in self.layers]
        total_b = [np.zeros_like(ly.b) for ly in self.layers]
        for input, target in examples:
            loss_value, grads = self.compute_gradients(input, target, loss=loss)
            total_loss += loss_value
            n_examples += 1
            for i_ly, grad in enumerate(grads):
                total_W[i_ly] += grad.W
                total_b[i_ly] += grad.b
        if n_examples == 0:
            raise ValueError("Supply at least one example.")

        mean_grads = [layers.LayerGradients(W=gW / n_examples, b=gb / n_examples)
                      for gW, gb in zip(total_W, total_b)]
        return total_loss / n_examples, mean_grads

    def apply_gradients(self, grads, learning_rate=None, sgd=None):
        """Update every layer's parameters.

        Parameters
        ----------
        grads : list of layers.LayerGradients
            One per layer, as returned by `compute_gradients` or `accumulate_gradients`
        learning_rate : float, optional
            Step size. Required if no `sgd` is given.
        sgd : sgd_updates.SGD, optional
            Update rule to use. Defaults to plain gradient descent.
        """
        if len(grads) != len(self.layers):
            raise errors.DimensionMismatch(expected=len(self.layers), actual=len(grads),
                                           what="per-layer gradients")
        if sgd is None and learning_rate is None:
            raise ValueError("Supply a learning rate or an SGD object.")

        # A failure in any layer undoes the updates already made to earlier layers.
        snapshot = [(ly.W.copy(), ly.b.copy(), ly.velocity_W.copy(), ly.velocity_b.copy())
                    for ly in self.layers]
        sgd_accumulators = copy.deepcopy(sgd.update_params) if sgd is not None else None
        try:
            for ly, grad in zip(self.layers, grads):
                if sgd is None:
                    ly.apply_update(grad.W, grad.b, learning_rate)
                else:
                    sgd.update(ly, grad, learning_rate=learning_rate)
        except (errors.NonFiniteValue, errors.DimensionMismatch):
            for ly, (W, b, velocity_W, velocity_b) in zip(self.layers, snapshot):
                ly.W[...], ly.b[...] = W, b
                ly.velocity_W[...], ly.velocity_b[...] = velocity_W, velocity_b
            if sgd is not None:
                sgd.update_params = sgd_accumulators
            raise

    def train_step(self, input, target, loss="mse", learning_rate=None, sgd=None):
        """Take one stochastic gradient descent step on a single example.

        Returns
        -------
        float
            The loss on this example, computed before the update
        """
        loss_value, grads = self.compute_gradients(input, target, loss=loss)
        self.apply_gradients(grads, learning_rate=learning_rate, sgd=sgd)
        return loss_value

    def evaluate(self, examples, loss="mse"):
        """Mean loss over the examples, without changing the network."""
        loss = losses.get_loss(loss)
        values = [loss(self.predict(x), self._check_target(y)) for x, y in examples]
        return float(np.mean(values))

    def fit(self, examples, n_epochs=None, learning_rate=None, batch_size=1, shuffle=True,
            seed=None, loss="mse", sgd_type="sgd", lr_rule=None, momentum_rule=None,
            sgd_max_grad_norm=None, checkpoint=None, callback=None, raise_on_failure=False):
        """Perform supervised training on the input data.

        Parameters
        ----------
        examples
            Training data; a list of `TrainingExample`s or (input, target) pairs,
            a 2-tuple of (inputs array, targets array), or a `readers.Data` object
        n_epochs : int
            Train for this many epochs. (An "epoch" is one complete pass through
            the training data.)
        learning_rate : float, optional
            Constant learning rate. Ignored if `lr_rule` is given.
        batch_size : int, optional
            Number of examples whose gradients are averaged for each update
        shuffle : bool, optional
            Reorder the examples at the start of every epoch
        seed : int, optional
            Seed for the shuffling RNG

        Other Parameters
        ----------------
        See `training.SupervisedTraining`.

        Returns
        -------
        training.TrainingReport
        """
        from ..nnets import training  # `training` imports this module.

        self.trainer = training.SupervisedTraining(
            sgd_type=sgd_type, lr_rule=lr_rule, momentum_rule=momentum_rule,
            sgd_max_grad_norm=sgd_max_grad_norm, max_epochs=n_epochs,
            batch_size=batch_size, shuffle=shuffle, loss=loss, callback=callback)
        return self.trainer.fit(self, examples, n_epochs=n_epochs, learning_rate=learning_rate,
                                seed=seed, checkpoint=checkpoint,
                                raise_on_failure=raise_on_failure)

    def get_init_params(self):
        return dict(n_in=self.n_in,
                    layer_defs=[["FCLayer", {k: v for k, v in ly.get_params().items()
                                             if k != "n_in"}]
                                for ly in self.layers],
                    name=self.name)

    def get_trainable_params(self):
        return [{name: np.array(val, copy=True) for name, val in ly.get_trainable_params().items()}
                for ly in self.layers]

    def set_trainable_params(self, inp, layers=None):
        """Set the trainable parameters in this network from trainable
        parameters in an input.

        Parameters
        ----------
        inp : Network, list of dict, or string
            May be an existing Network, the output of `get_trainable_params`,
            or the filename of a checkpoint, pickle, or JSON model store.
        layers : list of strings, optional
            If provided, set parameters only for the layers with these
            names, using layers with corresponding names in the input.
        """
        # If the input is a string, read the network from that file first.
        if isinstance(inp, str):
            from ..data import files  # `files` imports this module.
            inp = files.load_network_file(inp)
        if isinstance(inp, Network):
            if layers is not None:
                params = [inp.get_layer(ly.name) if ly.name in layers else None
                          for ly in self.layers]
            elif inp.dimensions != self.dimensions:
                raise errors.DimensionMismatch(expected=self.dimensions, actual=inp.dimensions,
                                               what="network dimensions")
            else:
                params = inp.layers
        elif isinstance(inp, (list, tuple)) and len(inp) == len(self.layers):
            params = inp
        else:
            raise TypeError("Unable to restore weights from a \"{}\" object.".format(type(inp)))

        # Go through each layer in this object and set its weights.
        for ly, these_params in zip(self.layers, params):
            if layers is not None and ly.name not in layers:
                continue
            ly.set_trainable_params(these_params)
            log.debug("Set trainable parameters in layer {} "
                      "from input weights.".format(ly.name))

    def get_layer(self, name):
        """Returns the Layer object with the given name.
        """
        for ly in self.layers:
            if ly.name == name:
                return ly
        else:
            raise ValueError("Layer \"{}\" is not present in "
                             "network \"{}\".".format(name, self.name))

    def set_rng(self, rng):
        """Set the pseudo-random number generator in this object
        and in all Layers of this object.

        Parameters
        ----------
        rng : int or numpy.random.RandomState or `RandomState.get_state()`
        """
        self.rng = misc.get_rng(rng)
        for ly in self.layers:
            ly.rng = self.rng

    def copy(self):
        """Return an independent network with identical topology and parameters."""
        return copy.deepcopy(self)

    def merge(self, other, probability=0.5):
        """Return a new network whose every weight and bias is taken either from
        this network or from `other`.

        Parameters
        ----------
        other : Network
            Must have the same dimensions as this network
        probability : float, optional
            Chance that any one value comes from `other`
        """
        if self.dimensions != other.dimensions:
            raise errors.DimensionMismatch(
                message="The dimensions of these two neural networks don't match: "
                        "{}, {}".format(self.dimensions, other.dimensions))
        if not 0 <= probability <= 1:
            raise ValueError("The merge probability must be between 0 and 1.")

        result = self.copy()
        for ly, other_ly in zip(result.layers, other.layers):
            for param, other_param in zip(ly.params, other_ly.params):
                use_other = self.rng.random_sample(param.shape) < probability
                param[use_other] = other_param[use_other]
        result.trainer = None
        return result

    def mutate(self, probability):
        """Add Gaussian noise, with standard deviation 0.5, to each weight and
        bias with the given probability. Modifies this network in place.
        """
        if not 0 <= probability <= 1:
            raise ValueError("The mutation probability must be between 0 and 1.")
        for ly in self.layers:
            for param in ly.params:
                chosen = self.rng.random_sample(param.shape) < probability
                param[chosen] += self.rng.normal(scale=0.5, size=param.shape)[chosen]

    def __eq__(self, other):
        if not isinstance(other, Network):
            return NotImplemented
        if self.dimensions != other.dimensions:
            return False
        for ly, other_ly in zip(self.layers, other.layers):
            if ly.activation.name != other_ly.activation.name:
                return False
            if not (np.array_equal(ly.W, other_ly.W) and np.array_equal(ly.b, other_ly.b)):
                return False
        return True

    def __ne__(self, other):
        result = self.__eq__(other)
        return result if result is NotImplemented else not result

    __hash__ = None

    def __str__(self):
        lines = ["{}: {} trainable parameters".format(self.name, self.n_params)]
        lines.extend(str(ly) for ly in self.layers)
        return "\n".join(lines)

    def __getstate__(self):
        """Preserve the object's state. Layers store their own weights.
        The trainer is left out; checkpoints store it separately."""
        state = self.__dict__.copy()
        state["rng"] = self.rng.get_state()
        state["trainer"] = None
        return state

    def __setstate__(self, state):
        """Allow unpickling from stored weights.
        """
        self.__dict__.update(state)
        self.set_rng(self.rng)
