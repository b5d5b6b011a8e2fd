"""
File I/O and logging helpers for topictrends.

This module contains the small set of helpers shared by the pipeline stages:
logging with optional echo to stdout, pickle persistence and JSON output
with numpy values converted.
"""

import os
import json
import pickle
import logging

import numpy as np


# ============================================================================
# Logging
# ============================================================================

def log_print(message: str, level: str = "info", logger: logging.Logger = None, also_print: bool = False):
    """
    Logs and optionally prints a message.

    Parameters:
        message (str): The message to log/print.
        level (str): Logging level: 'debug', 'info', 'warning', 'error', or 'critical'.
        logger (logging.Logger): Logger instance. If None, uses the package logger.
        also_print (bool): Whether to also print to stdout.
    """
    if logger is None:
        logger = logging.getLogger("topictrends")

    log_func = getattr(logger, level.lower(), logger.info)
    log_func(message)

    if also_print:
        print(message)


# ============================================================================
# Persistence
# ============================================================================

def write_pickle(file_path, data, overwrite=True):
    """Write data to a pickle file, creating parent directories as needed."""
    if not overwrite and os.path.exists(file_path):
        raise FileExistsError(f"{file_path} already exists")
    parent = os.path.dirname(file_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(file_path, 'wb') as f:
        pickle.dump(data, f)


def read_pickle(file_path):
    """Read data from a pickle file."""
    with open(file_path, 'rb') as f:
        return pickle.load(f)


class NumpyEncoder(json.JSONEncoder):
    """Custom JSON encoder for NumPy data types."""
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, np.bool_):
            return bool(obj)
        return super().default(obj)


def write_json(file_path, data):
    """Write data to a JSON file, converting NumPy values on the way."""
    parent = os.path.dirname(file_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, cls=NumpyEncoder)
