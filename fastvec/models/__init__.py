"""
This package contains the fastText inference model and the structures it is loaded into.
"""

# bring model classes directly into package namespace, to save some typing
from .args import Args  # noqa:F401
from .dictionary import Dictionary  # noqa:F401
from .matrix import DenseMatrix, QuantizedMatrix  # noqa:F401
from .model import Model  # noqa:F401
from .fasttext import FastText, load_model  # noqa:F401
from ._fasttext_bin import FastTextFormatError  # noqa:F401
