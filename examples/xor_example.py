import argparse
import logging

import matplotlib.pyplot as plt
import numpy as np

from clear_deep_network import (ArraySampleProvider, Dense, Network, SerialScheduler, classification_accuracy,
                                configure_logging, fit, save_network)


def build_xor_network(scheduler=None) -> Network:
    """2 inputs -> 4 tanh nodes -> 1 sigmoid node."""
    network = Network(scheduler=scheduler)
    network.add_input("X", [2])
    network.add_layer()
    network.add_channel(0, "hidden", ["X"], [Dense('tanh', 4)])
    network.add_layer()
    network.add_channel(1, "out", ["hidden"], [Dense('sigmoid', 1)])
    return network


def xor_example(epochs: int, training_rate: float, seed: int, plot: bool, save_path: str = None):
    """Example of training on the XOR problem."""
    logger = logging.getLogger("XORExample")
    logger.info("--- Running XOR Example ---")

    # --- Data ---
    X = np.array([[-1, -1], [-1, 1], [1, -1], [1, 1]], dtype=float)
    y = [0, 1, 1, 0]
    provider = ArraySampleProvider(X, y)

    # --- Network ---
    np.random.seed(seed)
    with build_xor_network(SerialScheduler()) as network:
        network.validate()
        logger.info(f"XOR Network Summary:\n{network.summary()}")

        # --- Training ---
        history = fit(network, provider, epochs=epochs, training_rate=training_rate, log_every=max(epochs // 10, 1))

        # --- Evaluation ---
        for inputs, target in zip(X, y):
            network.set_inputs(inputs)
            output = network.feed_forward()
            result_class = network.get_result_class()
            logger.info(f"Input: {inputs}, Target: {target}, Prediction: {output[0]:.4f} -> Class: {result_class} "
                        f"{'(Correct)' if result_class == target else '(Incorrect)'}")
        logger.info(f"XOR Accuracy: {classification_accuracy(network, provider):.2%}")

        if save_path:
            save_network(network, save_path)

    # --- Plotting History ---
    if plot:
        plt.figure("XOR Training History", figsize=(8, 5))
        plt.plot(history['epoch'], history['loss'], label='Training Loss')
        plt.xlabel('Epoch')
        plt.ylabel('Loss (squared error)')
        plt.title('XOR Training History')
        plt.legend()
        plt.grid(True, alpha=0.3)
        plt.ylim(bottom=0)
        plt.tight_layout()
        plt.show()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Train a small deep network on XOR")
    parser.add_argument("--epochs", type=int, default=2000)
    parser.add_argument("--rate", type=float, default=0.5)
    parser.add_argument("--seed", type=int, default=1)
    parser.add_argument("--plot", action="store_true", help="Show the training loss curve")
    parser.add_argument("--save", default=None, help="Save the trained network to this JSON file")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    configure_logging(args.log_level)
    xor_example(args.epochs, args.rate, args.seed, args.plot, args.save)
