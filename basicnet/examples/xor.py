"""
Train a network on the XOR problem.
"""
import numpy as np

from basicnet.data import files
from basicnet.nnets import nets
from basicnet.nnets import training


XOR_FEATURES = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=np.float64)
XOR_TARGETS = np.array([[0], [1], [1], [0]], dtype=np.float64)


def fit_xor(n_epochs=2000, learning_rate=0.5, seed=42, checkpoint=None):
    """Train a 2-4-1 tanh/sigmoid network on XOR. Converges to a mean squared
    error well under 0.05 with the default settings.
    """
    net = nets.Network(2, [(4, "tanh"), (1, "sigmoid")], name="XOR", random_state=seed)
    report = training.train(net, (XOR_FEATURES, XOR_TARGETS), epochs=n_epochs,
                            learning_rate=learning_rate, seed=seed, checkpoint=checkpoint)

    return net, report


def fit_xor_scheduled(n_epochs=1000, checkpoint=None):
    """Train on XOR with Nesterov momentum, halving the learning rate whenever
    the loss stalls for 50 epochs."""
    lr_rule = {"rule": "stalled", "initial_value": 0.2, "multiply_by": 0.5, "interval": 50}
    momentum_rule = {"rule": "constant", "initial_value": 0.9}

    net = nets.Network.build(2, 1, n_hidden_layers=1, n_hidden=4, activation="sigmoid",
                             random_state=42, name="XOR")
    report = net.fit((XOR_FEATURES, XOR_TARGETS), n_epochs=n_epochs, sgd_type="nag",
                     lr_rule=lr_rule, momentum_rule=momentum_rule, seed=42,
                     checkpoint=checkpoint)

    return net, report


if __name__ == "__main__":
    net, report = fit_xor()
    print("Status: {}; final loss {:.5}".format(report.status, report.final_loss))
    for features in XOR_FEATURES:
        print("{} -> {:.3f}".format(features, net.predict(features)[0]))
    print(files.serialize(net))
