"""Saving and loading networks as JSON documents.

The document layout is defined by the pydantic models in ``documents``.
Inputs are stored with their id and shape only; their values are set by the
caller after loading.
"""

import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as DocumentValidationError

from .config import DEFAULT_MAX_WORKERS
from .documents import NetworkDocument
from .errors import PersistenceError
from .network import Network


def network_to_dict(network: Network) -> Dict[str, Any]:
    """Plain, JSON-compatible dictionary describing the network and its weights."""
    return network.to_document().model_dump(mode="json")


def network_from_dict(data: Dict[str, Any], scheduler=None,
                      max_workers: Optional[int] = DEFAULT_MAX_WORKERS) -> Network:
    """
    Rebuilds a network from ``network_to_dict`` output.

    Raises:
        PersistenceError: If a field is missing or mistyped, an operator type
                          is unknown, or the format version is unsupported.
    """
    try:
        document = NetworkDocument.model_validate(data)
    except DocumentValidationError as e:
        raise PersistenceError(f"Invalid network document: {e}") from e
    return Network.from_document(document, scheduler=scheduler, max_workers=max_workers)


def save_network(network: Network, filename: str):
    """
    Saves the network's topology and learned parameters to a JSON file.

    Args:
        network: The network to save.
        filename: Path to the file. '.json' extension is recommended.
    """
    data = network_to_dict(network)
    with open(filename, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    logging.info(f"Network saved to {filename}")


def load_network(filename: str, scheduler=None, max_workers: Optional[int] = DEFAULT_MAX_WORKERS) -> Network:
    """
    Loads a network saved with ``save_network``.

    Raises:
        FileNotFoundError: If the file does not exist.
        PersistenceError: If the file is not valid JSON or not a valid network document.
    """
    try:
        with open(filename, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logging.error(f"Network file not found: {filename}")
        raise
    except json.JSONDecodeError as e:
        logging.error(f"Error reading network file {filename}: {e}")
        raise PersistenceError(f"Could not parse {filename}: {e}") from e

    network = network_from_dict(data, scheduler=scheduler, max_workers=max_workers)
    logging.info(f"Network loaded successfully from {filename}")
    return network
