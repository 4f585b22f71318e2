"""
Tests for the training loop.
"""
import os

import numpy as np
import pytest

from basicnet.data import files
from basicnet.nnets import errors
from basicnet.nnets import nets
from basicnet.nnets import sgd_updates
from basicnet.nnets import training


def divergent_net():
    """An all-linear network, which blows up quickly under a huge learning rate."""
    return nets.Network(2, [(4, "linear"), (1, "linear")], random_state=0)


@pytest.mark.integration
class TestConvergence:

    def test_xor(self, xor_net, xor_data):
        report = training.train(xor_net, xor_data, epochs=4000, learning_rate=0.5, seed=42)

        assert report.status == training.COMPLETED
        assert report.epochs_completed == 4000
        assert report.final_loss < 0.05
        predictions = xor_net.predict(xor_data[0])
        assert np.all(np.abs(predictions - xor_data[1]) < 0.5)

    def test_mini_batches_reduce_loss(self, xor_net, xor_data):
        report = training.train(xor_net, xor_data, epochs=300, learning_rate=0.5,
                                batch_size=2, seed=1)
        assert report.per_epoch_loss[-1] < report.per_epoch_loss[0]

    def test_network_fit_with_momentum(self, xor_net, xor_data):
        report = xor_net.fit(xor_data, n_epochs=300, sgd_type="nag",
                             lr_rule=0.1, momentum_rule=0.9, seed=3)
        assert report.status == training.COMPLETED
        assert report.per_epoch_loss[-1] < report.per_epoch_loss[0]
        assert isinstance(xor_net.trainer, training.SupervisedTraining)

    def test_cross_entropy_classifier(self):
        rng = np.random.RandomState(0)
        features = rng.normal(size=(40, 2))
        labels = (features[:, 0] > 0).astype(int)
        targets = np.eye(2)[labels]
        net = nets.Network(2, [(4, "tanh"), (2, "softmax")], random_state=0)

        report = training.train(net, (features, targets), epochs=50, learning_rate=0.1,
                                loss="cross_entropy", seed=0)
        assert report.final_loss < report.per_epoch_loss[0]
        assert np.mean(np.argmax(net.predict(features), axis=1) == labels) > 0.9


@pytest.mark.integration
class TestDeterminism:

    def test_same_seeds_same_weights(self, xor_data):
        results = []
        for _ in range(2):
            net = nets.Network(2, [(4, "tanh"), (1, "sigmoid")], random_state=42)
            report = training.train(net, xor_data, epochs=50, learning_rate=0.5, seed=9)
            results.append((net, report))
        assert results[0][0] == results[1][0]
        assert results[0][1].per_epoch_loss == results[1][1].per_epoch_loss

    def test_shuffle_seed_matters(self, xor_data):
        nets_trained = []
        for seed in [1, 2]:
            net = nets.Network(2, [(4, "tanh"), (1, "sigmoid")], random_state=42)
            training.train(net, xor_data, epochs=5, learning_rate=0.5, seed=seed)
            nets_trained.append(net)
        assert nets_trained[0] != nets_trained[1]

    def test_one_batch_is_one_averaged_update(self, xor_net, xor_data):
        expected = xor_net.copy()
        examples = list(zip(*xor_data))
        _, grads = expected.accumulate_gradients(examples)
        expected.apply_gradients(grads, learning_rate=0.5)

        training.train(xor_net, xor_data, epochs=1, learning_rate=0.5, batch_size=4,
                       shuffle=False)
        for ly, exp_ly in zip(xor_net.layers, expected.layers):
            np.testing.assert_allclose(ly.W, exp_ly.W)
            np.testing.assert_allclose(ly.b, exp_ly.b)


@pytest.mark.integration
class TestFailure:

    def test_huge_learning_rate_fails(self, xor_data):
        net = divergent_net()
        with np.errstate(all="ignore"):
            report = training.train(net, xor_data, epochs=200, learning_rate=1e6, seed=0)

        assert report.status == training.FAILED
        assert report.failure_reason
        assert report.epochs_completed < 200
        assert report.last_good_epoch == report.epochs_completed
        for ly in net.layers:
            assert np.all(np.isfinite(ly.W))
            assert np.all(np.isfinite(ly.b))

    def test_failure_restores_last_good_weights(self, xor_data):
        net = divergent_net()
        events = []
        good = {"epoch": 0, "net": net.copy()}

        def callback(event, **fields):
            events.append(event)
            if event == "epoch":
                good.update(epoch=fields["epoch"], net=net.copy())

        with np.errstate(all="ignore"):
            report = training.train(net, xor_data, epochs=200, learning_rate=1e6, seed=0,
                                    callback=callback)
        assert report.last_good_epoch == good["epoch"]
        assert net == good["net"]
        assert events[0] == "start"
        assert events[-1] == "failed"
        assert "completed" not in events

    def test_raise_on_failure(self, xor_data):
        net = divergent_net()
        with np.errstate(all="ignore"):
            with pytest.raises(errors.NonFiniteValue) as excinfo:
                training.train(net, xor_data, epochs=200, learning_rate=1e6, seed=0,
                               raise_on_failure=True)
        assert excinfo.value.epoch is not None
        assert all(np.all(np.isfinite(ly.W)) for ly in net.layers)


@pytest.mark.unit
class TestTrainerControl:

    def test_events(self, xor_net, xor_data):
        events = []
        training.train(xor_net, xor_data, epochs=3, learning_rate=0.5, seed=0,
                       callback=lambda event, **kw: events.append((event, kw)))
        assert [e[0] for e in events] == ["start", "epoch", "epoch", "epoch", "completed"]
        assert events[1][1]["epoch"] == 1
        assert np.isfinite(events[1][1]["loss"])

    def test_callback_errors_are_not_fatal(self, xor_net, xor_data):
        def bad_callback(event, **fields):
            raise RuntimeError("callback failure")

        report = training.train(xor_net, xor_data, epochs=2, learning_rate=0.5,
                                callback=bad_callback)
        assert report.status == training.COMPLETED

    def test_request_stop(self, xor_net, xor_data):
        def callback(event, **fields):
            if event == "epoch" and fields["epoch"] == 3:
                trainer.request_stop()

        trainer = training.SupervisedTraining(lr_rule=0.5, callback=callback)
        assert trainer.status == training.IDLE
        report = trainer.fit(xor_net, xor_data, n_epochs=10)

        assert report.status == training.STOPPED
        assert report.epochs_completed == 3
        assert trainer.status == training.STOPPED

    def test_stop_flag_clears_on_next_fit(self, xor_net, xor_data):
        trainer = training.SupervisedTraining(lr_rule=0.5)
        trainer.request_stop()
        report = trainer.fit(xor_net, xor_data, n_epochs=2)
        assert report.status == training.COMPLETED

    def test_keyboard_interrupt(self, xor_net, xor_data):
        def callback(event, **fields):
            if event == "epoch" and fields["epoch"] == 2:
                raise KeyboardInterrupt

        trainer = training.SupervisedTraining(lr_rule=0.5)
        trainer.callback = callback
        report = trainer.fit(xor_net, xor_data, n_epochs=5)
        assert report.status == training.STOPPED
        assert report.epochs_completed == 2

    def test_zero_epochs(self, xor_net, xor_data):
        before = xor_net.copy()
        report = training.train(xor_net, xor_data, epochs=0, learning_rate=0.5)
        assert report.status == training.COMPLETED
        assert report.per_epoch_loss == []
        assert np.isnan(report.final_loss)
        assert xor_net == before

    def test_needs_epochs(self, xor_net, xor_data):
        with pytest.raises(ValueError):
            training.SupervisedTraining().fit(xor_net, xor_data)

    def test_invalid_learning_rate(self, xor_net, xor_data):
        with pytest.raises(ValueError):
            training.train(xor_net, xor_data, epochs=1, learning_rate=-1.)

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            training.SupervisedTraining(batch_size=0)

    def test_mismatched_examples(self, xor_net):
        with pytest.raises(errors.DimensionMismatch):
            training.train(xor_net, [([1., 0., 1.], [1.])], epochs=1, learning_rate=0.5)

    def test_no_examples(self, xor_net):
        with pytest.raises(ValueError):
            training.train(xor_net, [], epochs=1, learning_rate=0.5)

    def test_learning_rate_schedule(self, xor_net, xor_data):
        lr_rule = sgd_updates.Rule("fixed", 0.4, multiply_by=0.5, interval=2)
        trainer = training.SupervisedTraining(lr_rule=lr_rule)
        trainer.fit(xor_net, xor_data, n_epochs=4)
        assert trainer.sgd.learning_rate == pytest.approx(0.1)

    def test_format_cost(self):
        assert training.format_cost("mse", 0.25) == "MSE is 0.25"
        assert training.format_cost(["nll", "other"], [1.5, 2.]) == "NLL is 1.5; other is 2.0"


@pytest.mark.unit
class TestCheckpoints:

    def test_checkpoint_every_epoch(self, xor_net, xor_data, tmp_path):
        stem = str(tmp_path / "ckpt" / "xor")
        report = training.train(xor_net, xor_data, epochs=3, learning_rate=0.5,
                                checkpoint=stem)

        fname = os.path.join(str(tmp_path / "ckpt"), "xor_last.pkl.gz")
        assert os.path.exists(fname)
        assert xor_net.trainer.checkpoints_written["last"] == fname

        restored, metadata = files.checkpoint_read(fname, get_metadata=True)
        assert restored == xor_net
        assert metadata["checkpoint_stem"] == "xor"
        assert restored.trainer.train_loss == report.per_epoch_loss
        assert restored.trainer.callback is None


@pytest.mark.integration
class TestExamples:

    def test_fit_xor(self):
        from basicnet.examples import xor
        net, report = xor.fit_xor(n_epochs=20)
        assert report.status == training.COMPLETED
        assert net.dimensions == [2, 4, 1]

    def test_fit_xor_scheduled(self, tmp_path):
        from basicnet.examples import xor
        net, report = xor.fit_xor_scheduled(n_epochs=20, checkpoint=str(tmp_path / "xor"))
        assert report.epochs_completed == 20
        assert net.trainer.checkpoints_written["last"] is not None
