"""
Tests for the Network container.
"""
import pickle

import numpy as np
import pytest

from basicnet.data import files
from basicnet.nnets import errors
from basicnet.nnets import layers
from basicnet.nnets import losses
from basicnet.nnets import nets
from basicnet.nnets import sgd_updates

from conftest import numerical_gradient, relative_error


def weights_of(net):
    return [(ly.W.copy(), ly.b.copy()) for ly in net.layers]


def assert_weights_equal(net, weights):
    for ly, (W, b) in zip(net.layers, weights):
        np.testing.assert_array_equal(ly.W, W)
        np.testing.assert_array_equal(ly.b, b)


@pytest.mark.unit
class TestConstruction:

    def test_pairs(self, xor_net):
        assert xor_net.dimensions == [2, 4, 1]
        assert xor_net.n_out == 1
        assert [ly.activation.name for ly in xor_net.layers] == ["tanh", "sigmoid"]
        assert xor_net.n_params == 2 * 4 + 4 + 4 + 1

    def test_layer_definitions(self):
        net = nets.Network(3, nets.define_mlp(2, [5, 4], "relu", output_activation="softmax"))
        assert net.dimensions == [3, 5, 4, 2]
        assert [ly.name for ly in net.layers] == ["fc0", "fc1", "output"]
        assert net.layers[-1].activation.name == "softmax"

    def test_define_mlp_single_hidden(self):
        assert nets.define_mlp(1, 4) == [["FCLayer", {"name": "fc0", "n_units": 4,
                                                      "activation": "sigmoid"}],
                                         ["FCLayer", {"name": "output", "n_units": 1,
                                                      "activation": "sigmoid"}]]

    def test_short_layer_name(self):
        net = nets.Network(2, [["FC", {"n_units": 3}]])
        assert isinstance(net.layers[0], layers.FCLayer)

    def test_prebuilt_layers(self):
        first = layers.FCLayer(2, 3, name="a")
        second = layers.FCLayer(3, 1, name="b")
        net = nets.Network(2, [first, second])
        assert net.layers[0] is first

    def test_prebuilt_layers_must_chain(self):
        with pytest.raises(errors.DimensionMismatch):
            nets.Network(2, [layers.FCLayer(2, 3, name="a"), layers.FCLayer(4, 1, name="b")])

    def test_empty(self):
        with pytest.raises(ValueError):
            nets.Network(2, [])

    def test_unknown_layer_type(self):
        with pytest.raises(ValueError):
            nets.Network(2, [["ConvLayer", {"n_units": 3}]])

    def test_bad_definition(self):
        with pytest.raises(TypeError):
            nets.Network(2, [3])

    def test_duplicate_names(self):
        with pytest.raises(ValueError):
            nets.Network(2, [["FCLayer", {"n_units": 3, "name": "x"}],
                             ["FCLayer", {"n_units": 1, "name": "x"}]])

    def test_build(self):
        net = nets.Network.build(2, 1, n_hidden_layers=2, n_hidden=3, random_state=0)
        assert net.dimensions == [2, 3, 3, 1]
        assert all(ly.activation.name == "sigmoid" for ly in net.layers)

    def test_build_without_hidden_layers(self):
        assert nets.Network.build(4, 2).dimensions == [4, 2]

    def test_same_seed_same_network(self):
        assert nets.Network(2, [(4, "tanh"), (1, "sigmoid")], random_state=3) == \
            nets.Network(2, [(4, "tanh"), (1, "sigmoid")], random_state=3)

    def test_get_layer(self, xor_net):
        assert xor_net.get_layer("output") is xor_net.layers[-1]
        with pytest.raises(ValueError):
            xor_net.get_layer("missing")

    def test_str(self, xor_net):
        assert "XOR" in str(xor_net)


@pytest.mark.unit
class TestPredict:

    def test_output_shape(self, deep_net):
        assert deep_net.predict([0.1, 0.2, 0.3]).shape == (2,)

    def test_rows(self, deep_net):
        inputs = np.arange(12.).reshape(4, 3)
        out = deep_net.predict(inputs)
        assert out.shape == (4, 2)
        np.testing.assert_allclose(out[2], deep_net.predict(inputs[2]))

    def test_no_rows(self, deep_net):
        assert deep_net.predict(np.zeros((0, 3))).shape == (0, 2)

    def test_column_vector(self, deep_net):
        assert deep_net.predict(np.ones((3, 1))).shape == (2,)

    def test_sigmoid_output_range(self, xor_net):
        out = xor_net.predict([1., 0.])
        assert 0 < out[0] < 1

    def test_wrong_length_leaves_weights_unchanged(self, xor_net):
        before = weights_of(xor_net)
        with pytest.raises(errors.DimensionMismatch) as excinfo:
            xor_net.predict([1., 0., 1.])
        assert str(excinfo.value) == "Expected 2 value(s) for input but got 3."
        assert_weights_equal(xor_net, before)

    def test_forward_returns_one_state_per_layer(self, deep_net):
        states = deep_net.forward([0.1, 0.2, 0.3])
        assert len(states) == 3
        np.testing.assert_array_equal(states[-1].output, deep_net.predict([0.1, 0.2, 0.3]))

    def test_backward_needs_all_states(self, deep_net):
        states = deep_net.forward([0.1, 0.2, 0.3])
        with pytest.raises(errors.NoForwardState):
            deep_net.backward(np.ones(2), states[:-1])


@pytest.mark.unit
class TestGradients:
    """Whole-network gradients against central differences."""

    @pytest.mark.parametrize("hidden, output, loss", [
        ("tanh", "linear", "mse"),
        ("sigmoid", "sigmoid", "mse"),
        ("tanh", "softmax", "cross_entropy"),
        ("tanh", "sigmoid", "binary_cross_entropy"),
        ("sigmoid", "softmax", "mse"),
    ])
    def test_gradient_check(self, hidden, output, loss):
        net = nets.Network(3, [(4, hidden), (3, hidden), (2, output)], random_state=11)
        x = np.array([0.5, -0.3, 0.8])
        target = np.array([0., 1.])
        loss_func = losses.get_loss(loss)

        def loss_value():
            return loss_func(net.predict(x), target)

        _, grads = net.compute_gradients(x, target, loss=loss)
        for ly, grad in zip(net.layers, grads):
            assert relative_error(grad.W, numerical_gradient(loss_value, ly.W)) < 1e-4
            assert relative_error(grad.b, numerical_gradient(loss_value, ly.b)) < 1e-4

    def test_accumulate_gradients_averages(self, xor_net, xor_data):
        examples = list(zip(*xor_data))
        mean_loss, grads = xor_net.accumulate_gradients(examples)

        singles = [xor_net.compute_gradients(x, y) for x, y in examples]
        assert mean_loss == pytest.approx(np.mean([s[0] for s in singles]))
        for i_ly, grad in enumerate(grads):
            np.testing.assert_allclose(grad.W, np.mean([s[1][i_ly].W for s in singles], axis=0))
            np.testing.assert_allclose(grad.b, np.mean([s[1][i_ly].b for s in singles], axis=0))

    def test_accumulate_needs_examples(self, xor_net):
        with pytest.raises(ValueError):
            xor_net.accumulate_gradients([])


@pytest.mark.unit
class TestTrainStep:

    def test_reduces_loss(self, xor_net):
        x, y = [1., 0.], [1.]
        first = xor_net.train_step(x, y, learning_rate=0.5)
        second = xor_net.train_step(x, y, learning_rate=0.5)
        assert second < first

    def test_wrong_target_length(self, xor_net):
        before = weights_of(xor_net)
        with pytest.raises(errors.DimensionMismatch):
            xor_net.train_step([1., 0.], [1., 0.], learning_rate=0.5)
        assert_weights_equal(xor_net, before)

    def test_non_finite_loss_changes_nothing(self, xor_net):
        before = weights_of(xor_net)
        with np.errstate(invalid="ignore"):
            with pytest.raises(errors.NonFiniteValue):
                xor_net.train_step([np.nan, 0.], [1.], learning_rate=0.5)
        assert_weights_equal(xor_net, before)

    @pytest.fixture
    def overflowing_net(self):
        # Finite loss and gradients, but the step overflows the output layer only.
        net = nets.Network(2, [(4, "linear"), (1, "linear")], random_state=0)
        net.layers[0].W[...] = 1e150
        return net

    def test_overflowing_step_changes_no_layer(self, overflowing_net):
        before = weights_of(overflowing_net)
        with np.errstate(all="ignore"):
            with pytest.raises(errors.NonFiniteValue):
                overflowing_net.train_step([1., 1.], [0.], learning_rate=1e10)
        assert_weights_equal(overflowing_net, before)

    def test_overflowing_step_keeps_velocities(self, overflowing_net):
        sgd = sgd_updates.SGD("momentum", lr_rule=1e10, momentum_rule=0.9)
        with np.errstate(all="ignore"):
            with pytest.raises(errors.NonFiniteValue):
                overflowing_net.train_step([1., 1.], [0.], sgd=sgd)
        for ly in overflowing_net.layers:
            assert not np.any(ly.velocity_W)
            assert not np.any(ly.velocity_b)

    def test_needs_a_learning_rate(self, xor_net):
        with pytest.raises(ValueError):
            xor_net.train_step([1., 0.], [1.])

    def test_apply_gradients_length(self, xor_net):
        with pytest.raises(errors.DimensionMismatch):
            xor_net.apply_gradients([], learning_rate=0.1)


@pytest.mark.unit
class TestCopyMergeMutate:

    def test_copy_is_independent(self, xor_net):
        clone = xor_net.copy()
        assert clone == xor_net
        clone.layers[0].W[0, 0] += 1.
        assert clone != xor_net

    def test_merge_extremes(self, xor_net):
        other = nets.Network(2, [(4, "tanh"), (1, "sigmoid")], random_state=1)
        assert xor_net.merge(other, probability=0.) == xor_net
        assert xor_net.merge(other, probability=1.) == other

    def test_merge_mixes(self, xor_net):
        other = nets.Network(2, [(4, "tanh"), (1, "sigmoid")], random_state=1)
        child = xor_net.merge(other)
        W, W_self, W_other = child.layers[0].W, xor_net.layers[0].W, other.layers[0].W
        assert np.all((W == W_self) | (W == W_other))
        assert child != xor_net and child != other

    def test_merge_leaves_parents_unchanged(self, xor_net):
        other = nets.Network(2, [(4, "tanh"), (1, "sigmoid")], random_state=1)
        before = weights_of(xor_net)
        xor_net.merge(other)
        assert_weights_equal(xor_net, before)

    def test_merge_mismatch(self, xor_net):
        with pytest.raises(errors.DimensionMismatch):
            xor_net.merge(nets.Network(2, [(3, "tanh"), (1, "sigmoid")]))

    def test_mutate_zero_probability(self, xor_net):
        clone = xor_net.copy()
        xor_net.mutate(0.)
        assert xor_net == clone

    def test_mutate_every_value(self, xor_net):
        clone = xor_net.copy()
        xor_net.mutate(1.)
        for ly, old in zip(xor_net.layers, clone.layers):
            assert np.all(ly.W != old.W)
            assert np.all(ly.b != old.b)

    def test_mutate_probability_range(self, xor_net):
        with pytest.raises(ValueError):
            xor_net.mutate(1.5)

    def test_equality_checks_activation(self):
        first = nets.Network(2, [(1, "tanh")], random_state=0)
        second = nets.Network(2, [(1, "sigmoid")], random_state=0)
        second.layers[0].W[...] = first.layers[0].W
        assert first != second


@pytest.mark.unit
class TestParams:

    def test_set_trainable_params_from_network(self, xor_net):
        other = nets.Network(2, [(4, "tanh"), (1, "sigmoid")], random_state=5)
        xor_net.set_trainable_params(other)
        assert xor_net == other

    def test_set_trainable_params_by_layer(self, xor_net):
        other = nets.Network(2, [(4, "tanh"), (1, "sigmoid")], random_state=5)
        hidden = xor_net.layers[0].W.copy()
        xor_net.set_trainable_params(other, layers=["output"])
        np.testing.assert_array_equal(xor_net.layers[0].W, hidden)
        np.testing.assert_array_equal(xor_net.layers[1].W, other.layers[1].W)

    def test_set_trainable_params_mismatch(self, xor_net):
        with pytest.raises(errors.DimensionMismatch):
            xor_net.set_trainable_params(nets.Network(2, [(3, "tanh"), (1, "sigmoid")]))

    def test_set_trainable_params_from_file(self, xor_net, tmp_path):
        other = nets.Network(2, [(4, "tanh"), (1, "sigmoid")], random_state=5)
        fname = str(tmp_path / "other.json")
        files.save_model(other, fname)
        xor_net.set_trainable_params(fname)
        assert xor_net == other

    def test_get_init_params(self, xor_net):
        rebuilt = nets.Network(**xor_net.get_init_params())
        assert rebuilt.dimensions == xor_net.dimensions
        assert [ly.name for ly in rebuilt.layers] == [ly.name for ly in xor_net.layers]

    def test_pickle(self, xor_net):
        restored = pickle.loads(pickle.dumps(xor_net))
        assert restored == xor_net
        np.testing.assert_array_equal(restored.predict([1., 0.]), xor_net.predict([1., 0.]))

    def test_pickle_keeps_rng_state(self, xor_net):
        restored = pickle.loads(pickle.dumps(xor_net))
        assert restored.rng.random_sample() == xor_net.rng.random_sample()

    def test_set_rng(self, xor_net):
        xor_net.set_rng(4)
        assert all(ly.rng is xor_net.rng for ly in xor_net.layers)

    def test_evaluate(self, xor_net, xor_data):
        examples = list(zip(*xor_data))
        before = weights_of(xor_net)
        expected = np.mean([losses.mse(xor_net.predict(x), y) for x, y in examples])
        assert xor_net.evaluate(examples) == pytest.approx(expected)
        assert_weights_equal(xor_net, before)
