"""
test_dense.py
~~~~~~~~~~~~~

Unit tests for the Dense and IndependentDense layers.
"""

import numpy as np
import pytest

from conftest import numerical_gradient
from manifold.exceptions import InvalidParameterError, ShapeError, UninitializedStateError
from manifold.layers import Dense, GradientRetention, IndependentDense
from manifold.losses import MeanSquaredError


@pytest.fixture
def layer(rng):
    return Dense(3, 2, activation='relu', rng=rng)


@pytest.mark.unit
class TestDenseForwardBackward:

    def test_parameter_shapes(self, layer):
        assert layer.weights.shape == (2, 3)
        assert layer.biases.shape == (2,)

    def test_forward_computes_affine_then_activation(self):
        w = np.array([[1.0, -1.0], [0.5, 2.0]])
        b = np.array([0.0, -10.0])
        layer = Dense(2, 2, activation='relu', initial_weights=w, initial_biases=b)
        out = layer.forward(np.array([[3.0, 1.0]]))
        # z = [3 - 1 + 0, 1.5 + 2 - 10] = [2, -6.5]
        np.testing.assert_allclose(out, [[2.0, 0.0]])

    def test_single_sample_is_promoted_to_batch(self, layer):
        assert layer.forward(np.array([1.0, 2.0, 3.0])).shape == (1, 2)

    def test_backward_returns_input_shaped_gradient(self, layer, rng):
        x = rng.normal(size=(5, 3))
        out = layer.forward(x)
        grad_input = layer.backward(np.ones_like(out))
        assert grad_input.shape == x.shape

    def test_wrong_input_width(self, layer):
        with pytest.raises(ShapeError):
            layer.forward(np.zeros((4, 5)))

    def test_wrong_gradient_shape(self, layer):
        layer.forward(np.zeros((4, 3)))
        with pytest.raises(ShapeError):
            layer.backward(np.zeros((4, 3)))

    @pytest.mark.parametrize("in_features, out_features", [(2.5, 3), (3, 0), (True, 2), (2, -1)])
    def test_sizes_must_be_positive_integers(self, in_features, out_features):
        with pytest.raises(InvalidParameterError):
            Dense(in_features, out_features)

    def test_initial_weights_shape_checked(self):
        with pytest.raises(ShapeError):
            Dense(3, 2, initial_weights=np.zeros((3, 2)))
        with pytest.raises(ShapeError):
            Dense(3, 2, initial_biases=np.zeros(3))


@pytest.mark.unit
class TestDenseLifecycle:

    def test_backward_before_forward(self, layer):
        with pytest.raises(UninitializedStateError):
            layer.backward(np.zeros((1, 2)))

    def test_backward_clears_cached_input(self, layer):
        layer.forward(np.zeros((2, 3)))
        layer.backward(np.zeros((2, 2)))
        assert layer.inputs is None
        with pytest.raises(UninitializedStateError):
            layer.backward(np.zeros((2, 2)))

    def test_gradients_before_backward(self, layer):
        with pytest.raises(UninitializedStateError):
            layer.gradients()

    def test_update_is_plain_sgd(self, layer, rng):
        x = rng.normal(size=(4, 3))
        layer.forward(x)
        layer.backward(rng.normal(size=(4, 2)))
        w_before, b_before = layer.get_weights()
        dW, db = layer.gradients()

        layer.update(0.1)

        np.testing.assert_allclose(layer.weights, w_before - 0.1 * dW)
        np.testing.assert_allclose(layer.biases, b_before - 0.1 * db)


@pytest.mark.unit
class TestDenseGradients:

    def test_identity_layer_matches_finite_differences(self, rng):
        """2x2 identity layer: analytic dW and db agree with perturbing each parameter."""
        layer = Dense(2, 2, activation='identity', rng=rng)
        x = rng.normal(size=(4, 2))
        targets = rng.normal(size=(4, 2))
        loss = MeanSquaredError()

        def loss_value():
            return loss.forward(layer.forward(x), targets)

        outputs = layer.forward(x)
        layer.backward(loss.gradient(outputs, targets))
        dW, db = layer.gradients()

        np.testing.assert_allclose(dW, numerical_gradient(loss_value, layer.weights), atol=1e-4)
        np.testing.assert_allclose(db, numerical_gradient(loss_value, layer.biases), atol=1e-4)

    @pytest.mark.parametrize("activation", ['relu', 'tanh', 'sigmoid'])
    def test_input_gradient_matches_finite_differences(self, activation, rng):
        layer = Dense(3, 4, activation=activation, rng=rng)
        x = rng.normal(size=(5, 3))
        upstream = rng.normal(size=(5, 4))

        def loss_value():
            return float(np.sum(layer.forward(x) * upstream))

        layer.forward(x)
        grad_input = layer.backward(upstream)

        np.testing.assert_allclose(grad_input, numerical_gradient(loss_value, x), atol=1e-4)


@pytest.mark.unit
class TestGradientRetention:

    def test_accumulate_sums_successive_backward_passes(self, rng):
        w = rng.normal(size=(2, 3))
        b = rng.normal(size=2)
        replace = Dense(3, 2, initial_weights=w, initial_biases=b)
        accumulate = Dense(3, 2, initial_weights=w, initial_biases=b,
                           retention=GradientRetention.ACCUMULATE)
        x1, x2 = rng.normal(size=(2, 3)), rng.normal(size=(2, 3))
        g = np.ones((2, 2))

        expected = []
        for x in (x1, x2):
            replace.forward(x)
            replace.backward(g)
            expected.append(replace.gradients()[0])
            accumulate.forward(x)
            accumulate.backward(g)

        np.testing.assert_allclose(accumulate.gradients()[0], expected[0] + expected[1])
        np.testing.assert_allclose(replace.gradients()[0], expected[1])

    def test_accumulated_gradients_cleared_by_update(self, rng):
        layer = Dense(3, 2, rng=rng, retention=GradientRetention.ACCUMULATE)
        layer.forward(rng.normal(size=(2, 3)))
        layer.backward(np.ones((2, 2)))
        layer.update(0.1)
        with pytest.raises(UninitializedStateError):
            layer.gradients()

    def test_independent_dense_step_averages(self, rng):
        w = rng.normal(size=(2, 3))
        b = np.zeros(2)
        layer = IndependentDense(3, 2, initial_weights=w, initial_biases=b)
        reference = Dense(3, 2, initial_weights=w, initial_biases=b)
        x = rng.normal(size=(4, 3))
        g = rng.normal(size=(4, 2))

        # Two half-batches accumulated and averaged
        for rows in (slice(0, 2), slice(2, 4)):
            layer.forward(x[rows])
            layer.backward(g[rows])
        assert layer.accumulated_steps == 2

        reference.forward(x)
        reference.backward(g)
        dW, db = reference.gradients()

        layer.step(0.5)

        np.testing.assert_allclose(layer.weights, w - 0.5 * dW / 2)
        np.testing.assert_allclose(layer.biases, b - 0.5 * db / 2)
        assert layer.accumulated_steps == 0
