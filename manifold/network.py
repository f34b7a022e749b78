import numpy as np
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple, Union
import json
import logging

from manifold.activations import ACTIVATION_FUNCTIONS, Activation, Identity, get_activation
from manifold.exceptions import (
    AlreadyWovenError,
    InvalidParameterError,
    ShapeError,
    UninitializedStateError,
)
from manifold.initializers import get_initializer
from manifold.layers import Conv2D, Dense, Flatten, GradientRetention, Layer, ParametricLayer
from manifold.layers.base import positive_int
from manifold.losses import LOSS_FUNCTIONS, Loss, SoftmaxCrossEntropy, get_loss

logger = logging.getLogger(__name__)

InputDim = Union[int, Tuple[int, int, int]]
ConvSpec = Tuple[int, Tuple[int, int]]


def _registered_name(component, registry: Dict[str, type], what: str) -> str:
    """Registry key whose class is exactly type(component); subclasses do not match."""
    for name, cls in registry.items():
        if type(component) is cls:
            return name
    raise InvalidParameterError(
        f"Cannot save {what} {component!r}: {type(component).__name__} is not in the registry "
        f"({sorted(registry.keys())}), so it could not be rebuilt on load."
    )


class ManifoldState(Enum):
    UNCONFIGURED = 'unconfigured'
    CONFIGURED = 'configured'
    WOVEN = 'woven'
    TRAINED = 'trained'


class Manifold:
    """
    A feedforward network built as a fixed linear stack of layers.

    Construction is split in two: the constructor and the ``set_*`` methods record
    the architecture, and ``weave`` allocates and initializes every layer. Forward
    and backward passes are only available once the network is woven.

    Example:
        nn = Manifold(2, 2, [4])
        nn.set_hidden_activation('relu').set_loss('softmax_cross_entropy').weave()
    """

    def __init__(
        self,
        input_dim: InputDim,
        output_dim: int,
        hidden_widths: Sequence[int] = (),
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Records the dimensions of the network. No layers are allocated yet.

        Args:
            input_dim: Number of input features, or (channels, height, width) for
                       image inputs.
            output_dim: Number of outputs (classes for classification).
            hidden_widths: Width of each hidden Dense layer, in order.
            rng: Random generator used by ``weave`` for weight initialization.
        """
        if isinstance(input_dim, (tuple, list)):
            if len(input_dim) != 3:
                raise InvalidParameterError(
                    f"Image input_dim must be (channels, height, width), got {tuple(input_dim)}"
                )
            self.input_dim: InputDim = tuple(positive_int(d, "input_dim entry") for d in input_dim)
        else:
            self.input_dim = positive_int(input_dim, "input_dim")
        self.output_dim = positive_int(output_dim, "output_dim")
        self.hidden_widths: List[int] = [positive_int(w, "hidden width") for w in hidden_widths]

        self.hidden_activation: Activation = Identity()
        self.output_activation: Activation = Identity()
        self.loss: Loss = SoftmaxCrossEntropy()
        self.weight_init: Optional[str] = None
        self.convolutions: List[ConvSpec] = []
        self.retention = GradientRetention.REPLACE

        self.rng = rng if rng is not None else np.random.default_rng()
        self._layers: List[Layer] = []
        self.state = ManifoldState.UNCONFIGURED

    # --- Configuration ---

    def _configure(self):
        if self.state in (ManifoldState.WOVEN, ManifoldState.TRAINED):
            raise AlreadyWovenError("Manifold is already woven; configuration must happen before weave().")
        self.state = ManifoldState.CONFIGURED

    def set_hidden_activation(self, activation: Union[str, Activation]) -> 'Manifold':
        self._configure()
        self.hidden_activation = get_activation(activation)
        return self

    def set_output_activation(self, activation: Union[str, Activation]) -> 'Manifold':
        self._configure()
        self.output_activation = get_activation(activation)
        return self

    def set_loss(self, loss: Union[str, Loss]) -> 'Manifold':
        self._configure()
        self.loss = get_loss(loss)
        return self

    def set_weight_init(self, weight_init: Optional[str]) -> 'Manifold':
        """Overrides the per-activation default initializer for every layer."""
        self._configure()
        if weight_init is not None:
            get_initializer(weight_init)
        self.weight_init = weight_init
        return self

    def set_convolutions(self, convolutions: Sequence[ConvSpec]) -> 'Manifold':
        """
        Adds Conv2D stages in front of the dense stack.

        Args:
            convolutions: Sequence of (out_channels, (kernel_h, kernel_w)).
                          Requires an image input_dim.
        """
        self._configure()
        if convolutions and not isinstance(self.input_dim, tuple):
            raise InvalidParameterError("Convolutions need input_dim given as (channels, height, width).")
        specs = []
        for out_channels, kernel_shape in convolutions:
            if isinstance(kernel_shape, int):
                kernel_shape = (kernel_shape, kernel_shape)
            kh, kw = kernel_shape
            specs.append((positive_int(out_channels, "out_channels"),
                          (positive_int(kh, "kernel height"), positive_int(kw, "kernel width"))))
        self.convolutions = specs
        return self

    def set_gradient_retention(self, retention: GradientRetention) -> 'Manifold':
        self._configure()
        self.retention = GradientRetention(retention)
        return self

    # --- Construction ---

    def weave(self) -> 'Manifold':
        """
        Allocates and initializes every layer, in order.

        Raises:
            AlreadyWovenError: If called more than once.
            InvalidParameterError: If SoftmaxCrossEntropy is paired with a non-identity
                                   output activation.
            ShapeError: If the convolution kernels do not fit the input.
        """
        if self.state in (ManifoldState.WOVEN, ManifoldState.TRAINED):
            raise AlreadyWovenError("weave() may only be called once; it would discard the current weights.")
        if isinstance(self.loss, SoftmaxCrossEntropy) and not isinstance(self.output_activation, Identity):
            raise InvalidParameterError(
                "SoftmaxCrossEntropy fuses the softmax into the loss; the output activation must be identity."
            )

        layers: List[Layer] = []
        common = dict(weight_init=self.weight_init, rng=self.rng, retention=self.retention)

        if isinstance(self.input_dim, tuple):
            channels, height, width = self.input_dim
            for out_channels, kernel_shape in self.convolutions:
                conv = Conv2D(channels, out_channels, kernel_shape, activation=self.hidden_activation, **common)
                height, width = conv.output_shape(height, width)
                channels = out_channels
                layers.append(conv)
            layers.append(Flatten())
            features = channels * height * width
        else:
            features = self.input_dim

        widths = self.hidden_widths + [self.output_dim]
        for i, width in enumerate(widths):
            is_output = i == len(widths) - 1
            activation = self.output_activation if is_output else self.hidden_activation
            layers.append(Dense(features, width, activation=activation, **common))
            features = width

        self._layers = layers
        self.state = ManifoldState.WOVEN
        logger.info(f"Woven manifold: {self.input_dim} -> {self.hidden_widths} -> {self.output_dim}, "
                    f"{len(self.parametric_layers)} parametric layers, loss={self.loss.name}")
        return self

    def _require_woven(self):
        if self.state not in (ManifoldState.WOVEN, ManifoldState.TRAINED):
            raise UninitializedStateError("Manifold must be woven before it can run; call weave() first.")

    @property
    def is_woven(self) -> bool:
        return self.state in (ManifoldState.WOVEN, ManifoldState.TRAINED)

    @property
    def layers(self) -> Tuple[Layer, ...]:
        return tuple(self._layers)

    @property
    def parametric_layers(self) -> List[ParametricLayer]:
        return [layer for layer in self._layers if layer.has_parameters]

    # --- Passes ---

    def forward(self, inputs: np.ndarray) -> np.ndarray:
        """
        Performs a forward pass through all layers of the network.

        Args:
            inputs: (batch_size, input_dim) or (batch_size, channels, height, width).

        Returns:
            Raw network output of shape (batch_size, output_dim). For
            SoftmaxCrossEntropy these are logits; use ``predict`` for probabilities.
        """
        self._require_woven()
        current_output = np.asarray(inputs, dtype=float)
        for i, layer in enumerate(self._layers):
            logger.debug(f"Forward pass - Layer {i} input shape: {current_output.shape}")
            current_output = layer.forward(current_output)
        return current_output

    def backward(self, initial_gradient: np.ndarray) -> np.ndarray:
        """
        Propagates dL/dOutput back through the layers in reverse order.

        Each layer stores its parameter gradients on the way. For
        SoftmaxCrossEntropy the initial gradient is already dL/dZ of the output
        layer, whose identity activation passes it through unchanged.

        Returns:
            The gradient with respect to the network input.
        """
        self._require_woven()
        current_gradient = np.asarray(initial_gradient, dtype=float)
        for i in reversed(range(len(self._layers))):
            logger.debug(f"Backward pass - Layer {i} receiving gradient shape: {current_gradient.shape}")
            current_gradient = self._layers[i].backward(current_gradient)
        return current_gradient

    def compute_loss(self, outputs: np.ndarray, targets: np.ndarray) -> Tuple[float, np.ndarray]:
        """Returns the configured loss and the initial gradient for backpropagation."""
        return self.loss.compute(outputs, targets)

    def gradients(self) -> List[Tuple[np.ndarray, np.ndarray]]:
        """(weight_gradient, bias_gradient) for every parametric layer, in layer order."""
        self._require_woven()
        return [layer.gradients() for layer in self.parametric_layers]

    def update(self, learning_rate: float):
        """
        Applies one SGD step to every parametric layer using its stored gradients.

        Args:
            learning_rate: The learning rate for the update step.
        """
        self._require_woven()
        for i, layer in enumerate(self._layers):
            logger.debug(f"Updating layer {i}")
            layer.update(learning_rate)
        self.state = ManifoldState.TRAINED

    def zero_grad(self):
        for layer in self._layers:
            layer.zero_grad()

    def predict(self, inputs: np.ndarray) -> np.ndarray:
        """
        Generates predictions: the forward pass mapped through the loss's output
        transform (softmax probabilities for SoftmaxCrossEntropy).
        """
        inputs = np.asarray(inputs, dtype=float)
        if not isinstance(self.input_dim, tuple) and inputs.ndim == 1:
            inputs = inputs.reshape(1, -1)
        return self.loss.output(self.forward(inputs))

    def evaluate(self, inputs: np.ndarray, targets: np.ndarray) -> Dict[str, float]:
        """
        Computes the loss and classification accuracy on the given data.

        Accuracy compares argmax positions for multi-column targets and
        thresholds at 0.5 for single-column targets.
        """
        targets = np.asarray(targets, dtype=float)
        outputs = self.forward(inputs)
        loss, _ = self.compute_loss(outputs, targets)
        predictions = self.loss.output(outputs)

        if predictions.shape[1] > 1:
            accuracy = np.mean(np.argmax(predictions, axis=1) == np.argmax(targets, axis=1))
        else:
            accuracy = np.mean((predictions >= 0.5).astype(float) == targets)

        return {'loss': float(loss), 'accuracy': float(accuracy)}

    # --- Persistence ---

    def _architecture(self) -> Dict:
        return {
            'input_dim': list(self.input_dim) if isinstance(self.input_dim, tuple) else self.input_dim,
            'output_dim': self.output_dim,
            'hidden_widths': self.hidden_widths,
            'hidden_activation': _registered_name(self.hidden_activation, ACTIVATION_FUNCTIONS, "hidden activation"),
            'output_activation': _registered_name(self.output_activation, ACTIVATION_FUNCTIONS, "output activation"),
            'loss': _registered_name(self.loss, LOSS_FUNCTIONS, "loss"),
            'convolutions': [[c, list(k)] for c, k in self.convolutions],
        }

    def save_weights(self, filename: str):
        """
        Saves the architecture and every parametric layer's weights and biases
        to a compressed .npz file, in layer order.

        Args:
            filename: Destination path. '.npz' is appended if missing.

        Raises:
            InvalidParameterError: If the loss or an activation is not a registered
                                   class, since ``load_weights`` could not rebuild it.
        """
        self._require_woven()
        try:
            architecture = self._architecture()
        except InvalidParameterError as e:
            logger.error(f"Error saving weights to {filename}: {e}")
            raise
        save_dict = {'architecture': np.array(json.dumps(architecture))}
        for i, layer in enumerate(self.parametric_layers):
            save_dict[f'layer_{i}_weights'] = layer.weights
            save_dict[f'layer_{i}_biases'] = layer.biases

        if not filename.endswith('.npz'):
            filename += '.npz'

        try:
            np.savez_compressed(filename, **save_dict)
        except OSError as e:
            logger.error(f"Error saving weights to {filename}: {e}")
            raise
        logger.info(f"Network weights and configuration saved to {filename}")

    @classmethod
    def load_weights(cls, filename: str, rng: Optional[np.random.Generator] = None) -> 'Manifold':
        """
        Rebuilds a network from a file written by ``save_weights``.

        The architecture is re-created and woven, which allocates tensors of the
        recorded shapes; the stored values are then copied in.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file is incomplete or its shapes do not match.
        """
        try:
            data = np.load(filename, allow_pickle=False)
        except FileNotFoundError:
            logger.error(f"Weight file not found: {filename}")
            raise

        try:
            arch = json.loads(str(data['architecture']))
            input_dim = arch['input_dim']
            network = cls(
                tuple(input_dim) if isinstance(input_dim, list) else input_dim,
                arch['output_dim'],
                arch['hidden_widths'],
                rng=rng,
            )
            network.set_hidden_activation(arch['hidden_activation'])
            network.set_output_activation(arch['output_activation'])
            network.set_loss(arch['loss'])
            network.set_convolutions([(c, tuple(k)) for c, k in arch['convolutions']])
            network.weave()

            for i, layer in enumerate(network.parametric_layers):
                layer.set_weights(data[f'layer_{i}_weights'], data[f'layer_{i}_biases'])
        except (KeyError, ShapeError, InvalidParameterError, json.JSONDecodeError) as e:
            logger.error(f"Incompatible weight file {filename}: {e}")
            raise ValueError(f"Incompatible or incomplete weight file: {filename}") from e
        finally:
            data.close()

        logger.info(f"Network loaded successfully from {filename}")
        return network

    def summary(self) -> str:
        """
        Generates a text summary of the network architecture and parameters.
        """
        summary_str = "\n" + "=" * 50 + "\n"
        summary_str += "Manifold Summary\n"
        summary_str += "=" * 50 + "\n"
        if not self.is_woven:
            summary_str += f"(not woven) {self.input_dim} -> {self.hidden_widths} -> {self.output_dim}\n"
            return summary_str + "=" * 50 + "\n"

        total_params = 0
        for i, layer in enumerate(self._layers):
            summary_str += f"Layer {i}: {layer!r}\n"
            if layer.has_parameters:
                total_params += layer.num_parameters
                summary_str += f"  Weight Shape: {layer.weights.shape}\n"
                summary_str += f"  Bias Shape: {layer.biases.shape}\n"
                summary_str += f"  Parameters: {layer.num_parameters}\n"
            summary_str += "-" * 50 + "\n"

        summary_str += f"Loss: {self.loss.name}\n"
        summary_str += f"Total Parameters: {total_params}\n"
        summary_str += "=" * 50 + "\n"
        return summary_str

    def __repr__(self):
        return (f"Manifold(input_dim={self.input_dim}, output_dim={self.output_dim}, "
                f"hidden_widths={self.hidden_widths}, state={self.state.value})")