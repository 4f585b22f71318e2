"""
This module contains parameter update functions for stochastic gradient descent optimization.
"""
from __future__ import division, print_function

import numpy as np

from ..util import netlog


log = netlog.setup_logging("nnets_sgd_updates", level="INFO")


class Rule(object):
    """
    # Subtract 1e-4 every epoch until reaching 1e-3.
    Rule("fixed", decrease_by=1e-4, interval=1, final_value=1e-3)

    # Multiply by 0.5 every 10 epochs until reaching a value of 1e-4.
    Rule("fixed", multiply_by=0.5, interval=10, final_value=1e-4)

    # Multiply by 0.5 at epochs 15, 23, 30, and every 5 epochs after.
    Rule("fixed", multiply_by=0.5, schedule=[15, 23, 30], interval=5)

    # Divide by 10 every time we go 5 epochs without an improvement.
    Rule("stalled", multiply_by=0.1, interval=5)
    """
    valid_rules = ["const", "constant", "fixed", "stalled"]

    def __init__(self, rule, initial_value,
                 final_value=None, decrease_by=0., multiply_by=1.,
                 interval=None, schedule=None):

        # Store initialization parameters.
        self.rule = rule.lower()
        if self.rule not in self.valid_rules:
            raise ValueError("Allowed rules are {}.".format(self.valid_rules))

        self.initial_value = initial_value
        self.final_value = final_value
        self.decrease_by = decrease_by
        self.multiply_by = multiply_by
        self.interval = interval
        self.initial_schedule = schedule
        self.schedule = None

        self.reset()

    def __str__(self):
        """Describe the contents of this Rule for humans.
        """
        display = "Rule: "
        if self.rule in ["const", "constant"]:
            display += "held constant at {}".format(self.initial_value)
        else:
            # First describe when we change a value.
            if self.rule in ["fixed"]:
                display += "change on a fixed schedule: "
            else:
                display += "when no improvement after "

            time_str = []
            if self.schedule:
                time_str.append("epochs {}".format(self.schedule[::-1]))
            if self.interval is not None:
                time_str.append("every {} epochs".format(self.interval))
            time_str = " and then ".join(time_str)

            # Now describe how we change the value when we do change it.
            change = []
            if self.decrease_by > 0:
                change.append("subtract {}".format(self.decrease_by))
            elif self.decrease_by < 0:
                change.append("add {}".format(-self.decrease_by))
            if self.multiply_by != 1:
                change.append("multiply by {}".format(self.multiply_by))
            change = " and then ".join(change)

            # Join everything together.
            display = "{}{}, {}".format(display, time_str, change)

        return display

    def is_update_time(self, epoch, loss):
        """Checks if it's time to do an update and returns True if so.
        If we're doing dynamic updates, this involves modifying our record of the best loss.
        """
        if self.rule in ["const", "constant"]:
            return False  # Never update with rule "constant".
        elif self.rule in ["stalled"]:
            if loss < self.best_loss:
                self.last_epoch = epoch
                self.best_loss = loss
            sch_adj = self.last_epoch  # Subtract from this epoch when checking on the schedule.
        else:
            sch_adj = 0

        # First figure out if we need to do the update.
        do_update = False
        if self.schedule:
            # If there's any items left in the schedule, ignore the "interval".
            if (epoch - sch_adj) == self.schedule[-1]:
                self.schedule.pop()  # We've completed this part of the schedule now.
                do_update = True
        elif self.interval and (epoch - self.last_epoch) == self.interval:
            do_update = True

        return do_update

    def update(self, value, epoch, loss):
        """Modifies the value according to the rule.

        **Returns**

        A 2-tuple of (new value, whether the value changed)
        """
        do_update = self.is_update_time(epoch, loss)
        new_value = value
        if do_update:
            new_value = self.multiply_by * (value - self.decrease_by)

            # Make sure the value can't pass its limits.
            if self.final_value is not None:
                func = min if (new_value - value > 0) else max
                new_value = func([new_value, self.final_value])
            self.last_epoch = epoch

            if new_value == value:
                # Make a note if we didn't actually change anything.
                do_update = False

        if do_update:
            self.update_epochs.append(epoch)

        return new_value, do_update

    def reset(self):
        """Forget all history and return the initial value."""
        self.schedule = None
        if self.initial_schedule:
            # If we have a schedule, flip it around so that we pick the first entries first.
            self.schedule = np.sort(self.initial_schedule).tolist()[::-1]

        self.last_epoch = 0  # Last time that we adjusted the value.
        self.best_loss = np.inf
        self.update_epochs = []  # Add epochs where we've made an update.

        return self.initial_value


class SGD(object):
    valid_types = ["sgd", "momentum", "nag", "rmsprop", "adagrad", "adadelta"]

    def __init__(self, sgd_type="sgd", lr_rule=None, momentum_rule=None,
                 max_grad_norm=None):
        """Pick the appropriate update rule.

        **Parameters**

        * `sgd_type` <string> : "sgd", "momentum", "nag", "rmsprop", "adagrad", or "adadelta"

        * `lr_rule` <Rule|dict|float|None> : A rule which determines how to modify the
            learning rate. A float is a constant learning rate.
            If None, the learning rate will be constant at 0.1.

        **Optional Parameters**

        * `momentum_rule` <Rule|dict|float|None> : The rule that determines how to modify the
            momentum as training progresses. If None, momentum will be held constant at 0.95.
            For "rmsprop" and "adadelta", the momentum is the decay rate `rho`.

        * `max_grad_norm` <float|None> : If the total norm of the gradient for any
            parameter array exceeds this value, it will be scaled back to equal this value.
            Disabled if None.
        """
        lr_rule = self._to_rule(lr_rule, 0.1, "lr_rule")
        momentum_rule = self._to_rule(momentum_rule, 0.95, "momentum_rule")

        sgd_type = sgd_type.lower()
        if sgd_type not in self.valid_types:
            raise ValueError("Unrecognized SGD algorithm: {}".format(sgd_type))

        self.lr_rule = lr_rule
        self.momentum_rule = momentum_rule
        self.sgd_type = sgd_type
        self.max_grad_norm = max_grad_norm

        self.learning_rate = self.lr_rule.initial_value
        self.momentum = self.momentum_rule.initial_value
        self._check_momentum(self.momentum)

        # Per-parameter accumulators for the adaptive methods, keyed by layer name.
        self.update_params = {}

    @staticmethod
    def _to_rule(rule, default, arg_name):
        if rule is None:
            rule = Rule("constant", default)
        elif isinstance(rule, dict):
            rule = Rule(**rule)
        elif isinstance(rule, (int, float)):
            rule = Rule("constant", float(rule))
        if not isinstance(rule, Rule):
            raise TypeError("The `{}` must be a Rule.".format(arg_name))
        return rule

    def _check_momentum(self, momentum):
        if self.sgd_type in ["momentum", "nag"]:
            if not 0 <= momentum < 1:
                raise ValueError("Momentum must be between 0 and 1.")
        elif self.sgd_type in ["rmsprop", "adadelta"]:
            if not 0 < momentum < 1:
                raise ValueError("Your rho value must be in the range (0, 1).")

    def reset(self, layers=None):
        """Return learning rate and momentum to their start values and
        clear all accumulated update state."""
        self.learning_rate = self.lr_rule.reset()
        self.momentum = self.momentum_rule.reset()
        self.update_params = {}
        for layer in (layers or []):
            layer.reset_velocity()

    def __str__(self):
        description = "SGD with {} updates. Learning rate = {}; momentum = {}.".\
                format(self.sgd_type, self.learning_rate, self.momentum)
        description += "\n\tUpdate learning rate according to {}".format(str(self.lr_rule))
        description += "\n\tUpdate momentum according to {}".format(str(self.momentum_rule))

        return description

    def update_lr(self, epoch, loss):
        self.learning_rate, lr_updated = self.lr_rule.update(self.learning_rate,
                                                             epoch=epoch, loss=loss)
        self.momentum, momentum_updated = self.momentum_rule.update(self.momentum,
                                                                    epoch=epoch, loss=loss)

        return lr_updated or momentum_updated

    def grad_restrict(self, grad):
        """Scales back the gradient of a parameter if the total norm is too large.
        This was recommended by Ilya Sutskever for RNNs and LSTMs at
        http://yyue.blogspot.ca/2015/01/a-brief-overview-of-deep-learning.html .
        """
        if self.max_grad_norm is not None:
            epsilon = 1e-7
            grad_norm = np.sum(grad ** 2)
            desired_norm = np.clip(grad_norm, 0, self.max_grad_norm ** 2)
            grad = np.sqrt((epsilon + desired_norm) / (epsilon + grad_norm)) * grad

        return grad

    def update(self, layer, grads, learning_rate=None):
        """Apply one update step to `layer`, given its `LayerGradients`.

        **Parameters**

        * `layer` <FCLayer> : Layer to modify
        * `grads` <LayerGradients> : Gradient of the loss with respect to W and b

        **Optional Parameters**

        * `learning_rate` <float|None> : Override the current learning rate.

        **Modifies**

        The parameters of `layer` (through `layer.apply_update`) and any
        accumulators this object keeps for that layer.
        """
        if learning_rate is None:
            learning_rate = self.learning_rate
        grad_W = self.grad_restrict(np.asarray(grads.W, dtype=np.float64))
        grad_b = self.grad_restrict(np.asarray(grads.b, dtype=np.float64))

        if self.sgd_type == "sgd":
            layer.apply_update(grad_W, grad_b, learning_rate)
        elif self.sgd_type in ["momentum", "nag"]:
            layer.apply_update(grad_W, grad_b, learning_rate, momentum=self.momentum,
                               nesterov=(self.sgd_type == "nag"))
        else:
            accumulators = self.update_params.setdefault(layer.name, {})
            update_creator = getattr(self, "gradient_updates_{}".format(self.sgd_type))
            new_W, acc_W = update_creator(grad_W, **accumulators.get("W", {}))
            new_b, acc_b = update_creator(grad_b, **accumulators.get("b", {}))

            layer.apply_update(new_W, new_b, learning_rate)

            # Only keep the new accumulators if the layer accepted the step.
            accumulators["W"], accumulators["b"] = acc_W, acc_b

    def gradient_updates_rmsprop(self, grad, acc=None, epsilon=1e-6):
        """RMSprop, following
        https://github.com/Newmu/Theano-Tutorials/blob/master/5_convolutional_net.py

        The RMSprop algorithm accumulates a measure of the RMS of previously seen
        gradients, and divides the gradient at this location by the RMS.
        This scaling dynamically adjusts the learning rate, allowing for fast learning
        when the gradients are changing slowly, and smaller updates when the cost function
        is changing quickly. The decay rate `rho` is this object's momentum.

        **Returns**

        2-tuple of (scaled gradient, dictionary of new accumulators)
        """
        rho = self.momentum
        if acc is None:
            acc = np.zeros_like(grad)
        acc_new = rho * acc + (1 - rho) * grad ** 2
        return grad / np.sqrt(acc_new + epsilon), {"acc": acc_new}

    def gradient_updates_adagrad(self, grad, accumulator=None, epsilon=1e-6):
        """
        Epsilon is not included in the typical formula,
        See "Notes on AdaGrad" by Chris Dyer for more info.

        This implementation from lasagne:
        https://github.com/benanne/Lasagne/blob/master/lasagne/updates.py
        """
        if accumulator is None:
            accumulator = np.zeros_like(grad)
        acc_new = accumulator + grad ** 2
        return grad / np.sqrt(acc_new + epsilon), {"accumulator": acc_new}

    def gradient_updates_adadelta(self, grad, accumulator=None, delta_acc=None, epsilon=1e-6):
        """
        In the paper, no learning rate is considered (so learning_rate=1.0).
        Probably best to keep it at this value.
        Epsilon is important for the very first update (so the numerator does not become 0).
        rho = 0.95 and epsilon=1e-6 are suggested in the paper and reported to work for
         multiple datasets (MNIST, speech).
        See "Adadelta: an adaptive learning rate method" by Matthew Zeiler for more info.

        This implementation from lasagne:
        https://github.com/benanne/Lasagne/blob/master/lasagne/updates.py
        """
        rho = self.momentum
        if accumulator is None:
            accumulator = np.zeros_like(grad)
        if delta_acc is None:
            delta_acc = np.zeros_like(grad)

        # `accumulator`: accumulate gradient magnitudes
        # `delta_acc`: accumulate update magnitudes (recursive!)
        acc_new = rho * accumulator + (1 - rho) * grad ** 2
        update = grad * np.sqrt(delta_acc + epsilon) / np.sqrt(acc_new + epsilon)  # Use the 'old' acc_delta here
        delta_acc_new = rho * delta_acc + (1 - rho) * update ** 2

        return update, {"accumulator": acc_new, "delta_acc": delta_acc_new}
