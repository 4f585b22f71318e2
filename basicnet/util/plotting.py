"""
Utilities for plotting neural network training.
"""
from matplotlib import pyplot as plt
import numpy as np


def _get_losses(history):
    """Pull the per-epoch losses out of a TrainingReport, a trainer,
    checkpoint metadata, or a plain sequence."""
    if hasattr(history, "per_epoch_loss"):
        return history.per_epoch_loss
    if hasattr(history, "train_loss"):
        return history.train_loss
    if isinstance(history, dict):
        return history["train_loss"]
    return history


def show_cost(history, axes=None, label="Training loss", log_scale=False):
    """Plot the mean training loss of each epoch.

    **Returns**

    The matplotlib Axes holding the plot
    """
    losses = np.asarray(_get_losses(history), dtype=np.float64)
    epochs = np.arange(1, len(losses) + 1)

    # Create the canvas if we weren't given one.
    if axes is None:
        _, axes = plt.subplots()

    axes.plot(epochs, losses, label=label)
    axes.set_xlabel("Epoch")
    axes.set_ylabel("Loss")
    if log_scale:
        axes.set_yscale("log")

    axes.legend()

    return axes
