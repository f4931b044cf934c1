"""
This package loads fastText word-embedding models from their native binary format and
computes word, subword and sentence vectors from them.

"""

__version__ = "0.3.0.dev0"

import logging

from fastvec import (  # noqa:F401
    matutils,
    models,
    utils,
)

logger = logging.getLogger("fastvec")
if not logger.handlers:  # To ensure reload() doesn't add another one
    logger.addHandler(logging.NullHandler())
