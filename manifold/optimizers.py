import numpy as np
from typing import Callable, Dict, List, Optional, Tuple, Union
import logging
import time

from manifold.exceptions import (
    DatasetMismatchError,
    InvalidParameterError,
    TrainingError,
    UninitializedStateError,
)
from manifold.network import Manifold

logger = logging.getLogger(__name__)

Reporter = Callable[[int, float], None]

DECAY_GRANULARITIES = ('epoch', 'step')


def log_progress(epoch: int, loss: float):
    """Default progress reporter: one INFO line per epoch."""
    logger.info(f"Epoch {epoch} - loss: {loss:.5f}")


class PreparedDataset:
    """
    Input/label arrays paired one-to-one and ready for mini-batch sampling.

    Attributes:
        inputs: (num_samples, ...) float array.
        labels: (num_samples, ...) float array.
    """

    def __init__(self, inputs, labels):
        inputs = np.asarray(inputs, dtype=float)
        labels = np.asarray(labels, dtype=float)
        if inputs.ndim == 0 or labels.ndim == 0:
            raise DatasetMismatchError("Inputs and labels must be sequences of examples, not scalars.")
        if inputs.shape[0] != labels.shape[0]:
            raise DatasetMismatchError(
                f"Number of inputs ({inputs.shape[0]}) and labels ({labels.shape[0]}) must match."
            )
        if inputs.shape[0] == 0:
            raise InvalidParameterError("Cannot prepare an empty dataset.")
        self.inputs = inputs
        self.labels = labels

    def __len__(self) -> int:
        return self.inputs.shape[0]

    def sample(self, size: int, rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
        """Draws ``size`` examples, each chosen independently with replacement."""
        indices = rng.integers(0, len(self), size=size)
        return self.inputs[indices], self.labels[indices]


class MiniBatchGradientDescent:
    """
    Mini-batch stochastic gradient descent with multiplicative learning-rate decay.

    The optimizer borrows the network for the duration of training and is the
    only thing that updates its parameters while ``train`` runs.

    Example:
        data = MiniBatchGradientDescent.prepare(x, y)
        trainer = MiniBatchGradientDescent(nn, rng=np.random.default_rng(0))
        trainer.set_learning_rate(0.01).set_decay(0.999).set_epochs(10).set_sample_size(4).verbose()
        history = trainer.train(data)
    """

    def __init__(
        self,
        network: Manifold,
        rng: Optional[np.random.Generator] = None,
        reporter: Optional[Reporter] = None,
    ):
        """
        Args:
            network: A woven Manifold.
            rng: Random generator for batch sampling.
            reporter: Called as reporter(epoch, loss) after each epoch when verbose.
                      Defaults to ``log_progress``.
        """
        if not network.is_woven:
            raise UninitializedStateError("The network must be woven before an optimizer can bind to it.")
        self.network = network
        self.rng = rng if rng is not None else np.random.default_rng()
        self.reporter = reporter if reporter is not None else log_progress

        self.initial_learning_rate = 0.01
        self.learning_rate = 0.01
        self.decay = 1.0
        self.decay_granularity = 'epoch'
        self.epochs = 1
        self.sample_size = 32
        self.steps_per_epoch: Optional[int] = None
        self.is_verbose = False
        self.epochs_completed = 0

        self.training_history: Dict[str, List] = {
            'epoch': [],
            'loss': [],
            'learning_rate': [],
            'time_per_epoch': [],
        }

    @staticmethod
    def prepare(inputs, labels) -> PreparedDataset:
        """
        Packages inputs and labels for sampling.

        Raises:
            DatasetMismatchError: If the number of inputs and labels differ.
        """
        return PreparedDataset(inputs, labels)

    # --- Configuration ---

    def set_learning_rate(self, learning_rate: float) -> 'MiniBatchGradientDescent':
        if not (np.isfinite(learning_rate) and learning_rate > 0):
            raise InvalidParameterError(f"Learning rate must be positive, got {learning_rate}")
        self.initial_learning_rate = float(learning_rate)
        self.learning_rate = float(learning_rate)
        return self

    def set_decay(self, decay: float) -> 'MiniBatchGradientDescent':
        if not (0 < decay <= 1):
            raise InvalidParameterError(f"Decay must be in (0, 1], got {decay}")
        self.decay = float(decay)
        return self

    def set_decay_granularity(self, granularity: str) -> 'MiniBatchGradientDescent':
        """Decay the learning rate once per 'epoch' (default) or once per 'step'."""
        if granularity not in DECAY_GRANULARITIES:
            raise InvalidParameterError(
                f"Decay granularity must be one of {DECAY_GRANULARITIES}, got {granularity!r}"
            )
        self.decay_granularity = granularity
        return self

    def set_epochs(self, epochs: int) -> 'MiniBatchGradientDescent':
        if isinstance(epochs, bool) or not isinstance(epochs, (int, np.integer)) or epochs < 0:
            raise InvalidParameterError(f"Epochs must be a non-negative integer, got {epochs!r}")
        self.epochs = int(epochs)
        return self

    def set_sample_size(self, sample_size: int) -> 'MiniBatchGradientDescent':
        if isinstance(sample_size, bool) or not isinstance(sample_size, (int, np.integer)) or sample_size < 1:
            raise InvalidParameterError(f"Sample size must be a positive integer, got {sample_size!r}")
        self.sample_size = int(sample_size)
        return self

    def set_steps_per_epoch(self, steps: Optional[int]) -> 'MiniBatchGradientDescent':
        """Fixes the number of mini-batch steps per epoch. None means len(dataset) // sample_size."""
        if steps is not None and (isinstance(steps, bool) or not isinstance(steps, (int, np.integer)) or steps < 1):
            raise InvalidParameterError(f"Steps per epoch must be a positive integer, got {steps!r}")
        self.steps_per_epoch = None if steps is None else int(steps)
        return self

    def verbose(self, enabled: bool = True) -> 'MiniBatchGradientDescent':
        self.is_verbose = bool(enabled)
        return self

    def learning_rate_at(self, epoch: int) -> float:
        """Learning rate in effect at the start of ``epoch`` under per-epoch decay: r0 * d**epoch.

        Epochs are counted across every ``train`` call on this optimizer.
        """
        return self.initial_learning_rate * self.decay ** epoch

    # --- Training ---

    def train_step(self, x_batch: np.ndarray, y_batch: np.ndarray) -> float:
        """
        Forward, loss, backward and update on a single mini-batch.

        Returns:
            The batch loss.

        Raises:
            TrainingError: If the loss is NaN or infinite.
        """
        outputs = self.network.forward(x_batch)
        loss, initial_gradient = self.network.compute_loss(outputs, y_batch)
        if not np.isfinite(loss):
            raise TrainingError(f"Non-finite loss ({loss}) at learning rate {self.learning_rate:.6g}; stopping.")

        self.network.backward(initial_gradient)
        self.network.update(self.learning_rate)
        return loss

    def train(self, inputs: Union[PreparedDataset, np.ndarray],
              labels: Optional[np.ndarray] = None) -> Dict[str, List]:
        """
        Trains the bound network for the configured number of epochs.

        Each epoch runs ``steps_per_epoch`` steps; each step samples
        ``sample_size`` examples with replacement, runs forward and backward
        and applies ``parameter -= learning_rate * gradient`` to every layer.
        Repeated calls continue where the previous one stopped: epoch indices,
        the history and the decayed learning rate all carry over.

        Args:
            inputs: A PreparedDataset, or the raw inputs (then ``labels`` is required).
            labels: Raw labels, paired with ``inputs``.

        Returns:
            The training history (epoch, loss, learning_rate, time_per_epoch).
        """
        if isinstance(inputs, PreparedDataset):
            dataset = inputs
        else:
            if labels is None:
                raise DatasetMismatchError("Labels are required when training on raw inputs.")
            dataset = self.prepare(inputs, labels)

        steps = self.steps_per_epoch or max(1, len(dataset) // self.sample_size)
        logger.info(
            f"Training on {len(dataset)} samples: {self.epochs} epochs x {steps} steps, "
            f"sample_size={self.sample_size}, learning_rate={self.learning_rate:.6g}, decay={self.decay}"
        )

        for _ in range(self.epochs):
            epoch = self.epochs_completed
            epoch_start_time = time.time()
            epoch_learning_rate = self.learning_rate
            epoch_loss = 0.0

            for _ in range(steps):
                x_batch, y_batch = dataset.sample(self.sample_size, self.rng)
                epoch_loss += self.train_step(x_batch, y_batch)
                if self.decay_granularity == 'step':
                    self.learning_rate *= self.decay

            epoch_loss /= steps
            self.training_history['epoch'].append(epoch)
            self.training_history['loss'].append(epoch_loss)
            self.training_history['learning_rate'].append(epoch_learning_rate)
            self.training_history['time_per_epoch'].append(time.time() - epoch_start_time)

            if self.is_verbose:
                self.reporter(epoch, epoch_loss)

            if self.decay_granularity == 'epoch':
                self.learning_rate *= self.decay
            self.epochs_completed += 1

        logger.info("Training finished.")
        return self.training_history
