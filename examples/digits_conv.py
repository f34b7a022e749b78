"""
Digit classification with a convolutional manifold.

Loads the scikit-learn 8x8 digits dataset, trains a Conv2D -> Dense network
with mini-batch gradient descent and reports test accuracy.
"""
import logging

import numpy as np
import matplotlib.pyplot as plt
from sklearn.datasets import load_digits
from sklearn.model_selection import train_test_split

from manifold import Manifold, MiniBatchGradientDescent

# --- Configuration ---
SEED = 42
EPOCHS = 15
SAMPLE_SIZE = 32
LEARNING_RATE = 0.1
DECAY = 0.95
NUM_CLASSES = 10


def load_digits_data():
    digits = load_digits()
    X = digits.data.reshape(-1, 1, 8, 8) / 16.0  # (N, C, H, W); pixel values are 0-16
    y = np.eye(NUM_CLASSES)[digits.target]
    return train_test_split(X, y, test_size=0.2, random_state=SEED, stratify=digits.target)


def digits_conv():
    logger = logging.getLogger("DigitsConv")
    rng = np.random.default_rng(SEED)

    X_train, X_test, y_train, y_test = load_digits_data()
    logger.info(f"Train: {X_train.shape}, Test: {X_test.shape}")

    nn = Manifold((1, 8, 8), NUM_CLASSES, [32], rng=rng)
    nn.set_convolutions([(8, (3, 3))]) \
      .set_hidden_activation('relu') \
      .set_loss('softmax_cross_entropy') \
      .weave()
    logger.info(nn.summary())

    trainer = MiniBatchGradientDescent(nn, rng=rng)
    history = trainer \
        .set_learning_rate(LEARNING_RATE) \
        .set_decay(DECAY) \
        .set_epochs(EPOCHS) \
        .set_sample_size(SAMPLE_SIZE) \
        .verbose() \
        .train(X_train, y_train)

    metrics = nn.evaluate(X_test, y_test)
    logger.info(f"Test loss: {metrics['loss']:.4f}, test accuracy: {metrics['accuracy']:.2%}")

    plt.figure("Digits Training History", figsize=(8, 5))
    plt.plot(history['epoch'], history['loss'], label='Training Loss')
    plt.xlabel('Epoch')
    plt.ylabel('Loss (softmax cross-entropy)')
    plt.title('Conv manifold on 8x8 digits')
    plt.legend()
    plt.grid(True, alpha=0.3)
    plt.tight_layout()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s")
    digits_conv()
    plt.show()
