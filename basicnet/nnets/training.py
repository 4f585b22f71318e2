"""
Take a model and data, and use stochastic gradient descent to fit the model to the data.
"""
from __future__ import division

import collections
from datetime import datetime, timedelta
import os

import numpy as np

from ..data import files
from ..data import readers
from ..nnets import errors
from ..nnets import losses
from ..nnets import sgd_updates
from ..util import misc
from ..util import netlog


log = netlog.setup_logging("nnet_training", level="INFO")


# Values of `SupervisedTraining.status`
IDLE = "idle"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
STOPPED = "stopped"


TrainingReport = collections.namedtuple("TrainingReport",
                                        ["final_loss", "per_epoch_loss", "status",
                                         "epochs_completed", "failure_reason",
                                         "last_good_epoch", "last_good_loss"])


def format_cost(name, val):
    """Return a string representing the cost, suitable for log output during training."""
    name, val = misc.as_list(name), misc.as_list(val)
    cost_string = []
    for n, v in zip(name, val):
        n = str(n).lower().replace(" ", "_")
        if n in ["mse", "squared"]:
            cost_string.append("MSE is {:.5}".format(v))
        elif n in ["cross_entropy", "nll", "negative_log_likelihood"]:
            cost_string.append("NLL is {:.5}".format(v))
        elif n in ["binary_cross_entropy", "bce"]:
            cost_string.append("BCE is {:.5}".format(v))
        else:
            cost_string.append("{} is {:.5}".format(n, v))

    return "; ".join(cost_string)


class SupervisedTraining(object):
    """Runs stochastic gradient descent on a `Network` and a set of labeled examples.

    **Parameters**

    * `sgd_type` <str|SGD|"sgd">
        The update algorithm (see `sgd_updates.SGD`), or an existing `SGD` object
    * `lr_rule`, `momentum_rule` <Rule|dict|float|None>
        Passed to `sgd_updates.SGD`
    * `sgd_max_grad_norm` <float|None>
        Passed to `sgd_updates.SGD`

    **Optional Parameters**

    * `max_epochs` <int|None>
        Number of epochs to train for, if not supplied to `fit`
    * `batch_size` <int|1>
        With 1, the network updates after every example. Otherwise the gradients of
        `batch_size` examples are averaged and applied as one update.
        The last batch of an epoch may be smaller.
    * `shuffle` <bool|True>
        Visit the examples in a new random order every epoch.
    * `loss` <str|Loss|"mse">
        Loss function to minimize
    * `callback` <callable|None>
        Called as `callback(event, **fields)` on the "start", "epoch", "completed",
        "failed", and "stopped" events. Errors raised by the callback are logged
        and otherwise ignored.
    """
    def __init__(self, sgd_type="sgd", lr_rule=None,
                 momentum_rule=None, sgd_max_grad_norm=None,
                 max_epochs=None, batch_size=1, shuffle=True, loss="mse", callback=None):
        if isinstance(sgd_type, sgd_updates.SGD):
            self.sgd = sgd_type
        else:
            self.sgd = sgd_updates.SGD(sgd_type, lr_rule, momentum_rule,
                                       max_grad_norm=sgd_max_grad_norm)
        if batch_size < 1:
            raise ValueError("The batch size must be at least 1.")
        self.max_epochs = max_epochs
        self.batch_size = int(batch_size)
        self.shuffle = shuffle
        self.loss = losses.get_loss(loss)
        self.callback = callback

        self.status = IDLE
        self._stop_requested = False
        self.train_loss = []
        self.checkpoints_written = {"last": None}

        self.epoch = 0
        self.examples_seen = 0
        self.last_training_loss = np.inf
        self.time_initialized = datetime.now()
        self.time_training = timedelta()

    def __getstate__(self):
        state = self.__dict__.copy()
        state["callback"] = None

        return state

    def __setstate__(self, state):
        self.__dict__.update(state)

    def request_stop(self):
        """Ask a running `fit` to end after the epoch in progress."""
        log.debug("Stop requested.")
        self._stop_requested = True

    def _notify(self, event, **fields):
        log.debug(netlog.format_event(event, **fields))
        if self.callback is not None:
            try:
                self.callback(event, **fields)
            except Exception:
                log.exception("Training callback failed on the \"{}\" event.".format(event))

    def _train_epoch(self, network, examples, rng):
        """Run through every example once. Returns the mean loss over the epoch,
        as measured before each update."""
        order = np.arange(len(examples))
        if self.shuffle:
            order = rng.permutation(order)

        total_loss = 0.
        for start in range(0, len(order), self.batch_size):
            batch = [examples[i] for i in order[start:start + self.batch_size]]
            if self.batch_size == 1:
                total_loss += network.train_step(batch[0].input, batch[0].target,
                                                 loss=self.loss, sgd=self.sgd)
            else:
                batch_loss, grads = network.accumulate_gradients(batch, loss=self.loss)
                network.apply_gradients(grads, sgd=self.sgd)
                total_loss += batch_loss * len(batch)
            self.examples_seen += len(batch)

        return misc.check_finite(total_loss / len(order), "training loss", epoch=self.epoch)

    def fit(self, network, examples, n_epochs=None, learning_rate=None, seed=None,
            checkpoint=None, raise_on_failure=False, extra_metadata=None):
        """Train `network` in place.

        **Parameters**

        * `network` <nets.Network>
        * `examples`
            Anything accepted by `readers.as_examples`

        **Optional Parameters**

        * `n_epochs` <int|None>
            Defaults to this object's `max_epochs`.
        * `learning_rate` <float|None>
            If given, hold the learning rate constant at this value.
        * `seed` <int|None>
            Seed for the RNG which orders the examples.
        * `checkpoint` <str|None>
            Directory or file stem. If given, write a checkpoint after every epoch.
        * `raise_on_failure` <bool|False>
            Re-raise the `NonFiniteValue` (after restoring the weights) instead of
            only reporting the failure.

        **Returns**

        A `TrainingReport`
        """
        if n_epochs is None:
            n_epochs = self.max_epochs
        if n_epochs is None:
            raise ValueError("Enter a maximum number of training epochs.")
        if n_epochs < 0:
            raise ValueError("The number of epochs can't be negative.")
        if learning_rate is not None:
            if not learning_rate > 0:
                raise ValueError("The learning rate must be positive.")
            self.sgd.lr_rule = sgd_updates.Rule("constant", float(learning_rate))
        if extra_metadata is None:
            extra_metadata = {}

        examples = readers.as_examples(examples, n_in=network.n_in, n_out=network.n_out)
        if len(examples) == 0:
            raise ValueError("Supply at least one training example.")

        rng = misc.get_rng(seed)
        self.sgd.reset(network.layers)
        self.checkpoints_written = {"last": None}
        self._stop_requested = False
        self.status = RUNNING
        self.epoch = 0
        self.train_loss = []

        checkpoint_dir, checkpoint_stem = files.parse_checkpoint(checkpoint)
        extra_metadata["checkpoint_stem"] = checkpoint_stem

        last_good_params = network.get_trainable_params()
        last_good_epoch, last_good_loss = 0, None
        failure_reason = None

        log.info("Beginning training.")
        log.info("Using {}".format(self.sgd))
        self._notify("start", n_epochs=n_epochs, n_examples=len(examples))
        epoch_start_time = datetime.now()
        while self.epoch < n_epochs:
            if self._stop_requested:
                self.status = STOPPED
                log.info("Stopping training as requested after {} epochs.".format(self.epoch))
                break
            try:
                self.epoch += 1
                self.time_training += datetime.now() - epoch_start_time
                epoch_start_time = datetime.now()

                self.last_training_loss = self._train_epoch(network, examples, rng)
                self.train_loss.append(self.last_training_loss)
                last_good_params = network.get_trainable_params()
                last_good_epoch, last_good_loss = self.epoch, self.last_training_loss

                log.info("Epoch {}, training {}".format(
                    self.epoch, format_cost(self.loss.name, self.last_training_loss)))
                self._notify("epoch", epoch=self.epoch, loss=self.last_training_loss)

                if checkpoint:
                    # Store our progress so we can resume if interrupted or examine training performance.
                    fname = os.path.join(checkpoint_dir, "{}_last.pkl.gz".format(checkpoint_stem))
                    files.checkpoint_write(network, self, fname, extra_metadata)
                    self.checkpoints_written["last"] = fname

                did_update = self.sgd.update_lr(self.epoch, self.last_training_loss)
                if did_update:
                    log.info("New learning rate = {}; momentum = "
                             "{}".format(self.sgd.learning_rate, self.sgd.momentum))
            except errors.NonFiniteValue as err:
                self._restore(network, last_good_params)
                self.status = FAILED
                failure_reason = "{} (epoch {})".format(err, self.epoch)
                log.error("Training failed: {} Restored the weights from epoch {}.".format(
                    failure_reason, last_good_epoch))
                self._notify("failed", epoch=self.epoch, reason=failure_reason,
                             last_good_epoch=last_good_epoch)
                if raise_on_failure:
                    raise errors.NonFiniteValue(failure_reason, epoch=self.epoch,
                                                loss=last_good_loss) from err
                break
            except KeyboardInterrupt:
                self._restore(network, last_good_params)
                self.status = STOPPED
                # An unfinished epoch doesn't count.
                self.epoch = last_good_epoch
                del self.train_loss[last_good_epoch:]
                log.info("Ending training early after {} epochs.".format(self.epoch))
                if self.checkpoints_written["last"]:
                    log.info("The epoch {} network state is stored at "
                             "\"{}\".".format(self.epoch, self.checkpoints_written["last"]))
                break

        self.time_training += datetime.now() - epoch_start_time

        if self.status == RUNNING:
            self.status = COMPLETED
            completion_string = "Optimization complete."
            if self.train_loss:
                completion_string += " Final training {}.".format(
                    format_cost(self.loss.name, self.train_loss[-1]))
            log.info(completion_string)
            self._notify("completed", epochs=len(self.train_loss),
                         loss=self.train_loss[-1] if self.train_loss else float("nan"))
        elif self.status == STOPPED:
            self._notify("stopped", epochs=len(self.train_loss))

        log.info("Total examples seen: {}".format(self.examples_seen))
        seconds = self.time_training.total_seconds()
        if seconds > 0:
            log.info("The code ran for {} epochs at {} epochs/min.".
                     format(len(self.train_loss), 60 * len(self.train_loss) / seconds))

        return TrainingReport(final_loss=self.train_loss[-1] if self.train_loss else float("nan"),
                              per_epoch_loss=list(self.train_loss),
                              status=self.status,
                              epochs_completed=len(self.train_loss),
                              failure_reason=failure_reason,
                              last_good_epoch=last_good_epoch,
                              last_good_loss=last_good_loss)

    @staticmethod
    def _restore(network, params):
        """Put back known-good weights and forget any momentum built up since."""
        network.set_trainable_params(params)
        for ly in network.layers:
            ly.reset_velocity()


def train(network, examples, epochs, learning_rate, batch_size=1, shuffle=True, seed=None,
          loss="mse", sgd_type="sgd", momentum=None, callback=None, checkpoint=None,
          raise_on_failure=False):
    """Train `network` on `examples` with a constant learning rate.

    **Returns**

    A `TrainingReport` of (final_loss, per_epoch_loss, status, epochs_completed,
    failure_reason, last_good_epoch, last_good_loss)

    **Raises**

    `DimensionMismatch` if any example doesn't fit the network, and
    `NonFiniteValue` on numerical failure if `raise_on_failure` is True.
    """
    trainer = SupervisedTraining(sgd_type=sgd_type, lr_rule=learning_rate,
                                 momentum_rule=momentum, max_epochs=epochs,
                                 batch_size=batch_size, shuffle=shuffle, loss=loss,
                                 callback=callback)
    network.trainer = trainer
    return trainer.fit(network, examples, n_epochs=epochs, learning_rate=learning_rate,
                       seed=seed, checkpoint=checkpoint, raise_on_failure=raise_on_failure)
