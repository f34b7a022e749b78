"""
test_optimizers.py
~~~~~~~~~~~~~~~~~~

Tests for dataset preparation and mini-batch gradient descent.
"""

import numpy as np
import pytest

from conftest import xor_samples
from manifold import (
    DatasetMismatchError,
    InvalidParameterError,
    Manifold,
    MiniBatchGradientDescent,
    PreparedDataset,
    TrainingError,
    UninitializedStateError,
)


@pytest.fixture
def network(rng):
    return Manifold(2, 2, [4], rng=rng).set_hidden_activation('relu').weave()


@pytest.fixture
def trainer(network, rng):
    return MiniBatchGradientDescent(network, rng=rng)


@pytest.mark.unit
class TestPrepare:

    def test_mismatched_lengths(self):
        with pytest.raises(DatasetMismatchError):
            MiniBatchGradientDescent.prepare(np.zeros((5, 2)), np.zeros((4, 2)))

    def test_empty_dataset(self):
        with pytest.raises(InvalidParameterError):
            PreparedDataset(np.zeros((0, 2)), np.zeros((0, 2)))

    def test_sample_shapes_and_pairing(self, rng):
        x = np.arange(10, dtype=float).reshape(5, 2)
        y = x * 10
        data = MiniBatchGradientDescent.prepare(x, y)
        assert len(data) == 5
        xb, yb = data.sample(8, rng)
        assert xb.shape == (8, 2)
        np.testing.assert_array_equal(yb, xb * 10)


@pytest.mark.unit
class TestConfiguration:

    def test_requires_woven_network(self, rng):
        with pytest.raises(UninitializedStateError):
            MiniBatchGradientDescent(Manifold(2, 2, rng=rng))

    @pytest.mark.parametrize("setter, value", [
        ('set_learning_rate', 0.0),
        ('set_learning_rate', float('nan')),
        ('set_decay', 0.0),
        ('set_decay', 1.5),
        ('set_decay_granularity', 'batch'),
        ('set_epochs', -1),
        ('set_epochs', 2.5),
        ('set_sample_size', 0),
        ('set_steps_per_epoch', 0),
    ])
    def test_invalid_values(self, trainer, setter, value):
        with pytest.raises(InvalidParameterError):
            getattr(trainer, setter)(value)

    def test_setters_chain(self, trainer):
        assert trainer.set_learning_rate(0.5).set_decay(0.9).set_epochs(3).verbose() is trainer
        assert trainer.learning_rate_at(2) == pytest.approx(0.5 * 0.81)


@pytest.mark.unit
class TestTraining:

    def test_epoch_decay(self, trainer, xor_data):
        x, y = xor_data
        history = trainer.set_learning_rate(0.1).set_decay(0.9).set_epochs(5).set_sample_size(10).train(x, y)
        assert trainer.learning_rate == pytest.approx(0.1 * 0.9 ** 5)
        np.testing.assert_allclose(history['learning_rate'], [0.1 * 0.9 ** e for e in range(5)])

    def test_step_decay(self, trainer, xor_data):
        x, y = xor_data
        trainer.set_learning_rate(0.1).set_decay(0.99).set_decay_granularity('step') \
            .set_epochs(3).set_sample_size(10).set_steps_per_epoch(4).train(x, y)
        assert trainer.learning_rate == pytest.approx(0.1 * 0.99 ** 12)

    def test_history_length_and_default_steps(self, trainer, xor_data, monkeypatch):
        x, y = xor_data
        calls = []
        original = trainer.train_step

        def counting_step(xb, yb):
            calls.append(xb.shape[0])
            return original(xb, yb)

        monkeypatch.setattr(trainer, 'train_step', counting_step)
        history = trainer.set_epochs(3).set_sample_size(50).train(x, y)

        assert history['epoch'] == [0, 1, 2]
        assert len(history['loss']) == 3
        # 200 samples // 50 = 4 steps per epoch
        assert calls == [50] * 12

    def test_zero_epochs_leaves_weights_untouched(self, trainer, network, xor_data):
        before = [layer.get_weights()[0] for layer in network.parametric_layers]
        trainer.set_epochs(0).train(*xor_data)
        for b, layer in zip(before, network.parametric_layers):
            np.testing.assert_array_equal(b, layer.weights)

    def test_reporter_only_called_when_verbose(self, network, rng, xor_data):
        reported = []
        trainer = MiniBatchGradientDescent(network, rng=rng, reporter=lambda e, l: reported.append(e))
        trainer.set_epochs(2).train(*xor_data)
        assert reported == []
        trainer.verbose().train(*xor_data)
        assert reported == [2, 3]

    def test_second_train_call_continues_epochs_and_decay(self, trainer, xor_data):
        x, y = xor_data
        trainer.set_learning_rate(0.1).set_decay(0.5).set_epochs(2).set_sample_size(50)
        trainer.train(x, y)
        history = trainer.train(x, y)

        assert history['epoch'] == [0, 1, 2, 3]
        np.testing.assert_allclose(history['learning_rate'], [0.1, 0.05, 0.025, 0.0125])
        assert trainer.epochs_completed == 4
        for epoch, rate in zip(history['epoch'], history['learning_rate']):
            assert trainer.learning_rate_at(epoch) == pytest.approx(rate)

    def test_raw_inputs_need_labels(self, trainer, xor_data):
        with pytest.raises(DatasetMismatchError):
            trainer.train(xor_data[0])

    def test_non_finite_loss_stops_training(self, trainer):
        x = np.full((8, 2), np.nan)
        y = np.tile([1.0, 0.0], (8, 1))
        with pytest.raises(TrainingError):
            trainer.set_sample_size(4).train(x, y)

    def test_train_step_is_plain_sgd(self, trainer, network, rng):
        x, y = xor_samples(6, rng)
        before = [layer.get_weights() for layer in network.parametric_layers]

        _, grad = network.compute_loss(network.forward(x), y)
        network.backward(grad)
        expected = [(w - 0.3 * dW, b - 0.3 * db)
                    for (w, b), (dW, db) in zip(before, network.gradients())]

        trainer.set_learning_rate(0.3).train_step(x, y)

        for (w, b), layer in zip(expected, network.parametric_layers):
            np.testing.assert_allclose(layer.weights, w)
            np.testing.assert_allclose(layer.biases, b)


@pytest.mark.integration
class TestXorConvergence:

    def test_learns_xor(self):
        """A 2-4-2 ReLU network trained at a fixed seed classifies a held-out XOR sample."""
        rng = np.random.default_rng(0)
        x, y = xor_samples(400, rng)

        nn = Manifold(2, 2, [4], rng=rng) \
            .set_hidden_activation('relu') \
            .set_loss('softmax_cross_entropy') \
            .weave()
        MiniBatchGradientDescent(nn, rng=rng) \
            .set_learning_rate(0.2) \
            .set_decay(0.995) \
            .set_epochs(100) \
            .set_sample_size(8) \
            .train(x, y)

        test_x, test_y = xor_samples(200, np.random.default_rng(1))
        assert nn.evaluate(test_x, test_y)['accuracy'] > 0.95
