#!/usr/bin/env python
# encoding: utf-8

"""Common utilities used in automated code tests for fastvec modules.

Examples:
---------

Models are small enough to be built in memory and written to a temporary folder:

>>> from fastvec.models.fasttext import load_model
>>> from fastvec.test.utils import build_model, temporary_file
>>>
>>> with temporary_file("toy.bin") as tf:
...     path = build_model().save_model(tf)
...     model = load_model(tf)

We can find our toy data in the test data directory:

>>> from fastvec.test.utils import datapath
>>>
>>> with open(datapath("pretrained.vec")) as f:
...     header = f.readline()

"""

import contextlib
import tempfile
import os
import shutil

import numpy as np

from fastvec.models.args import Args, LOSS_HS, MODEL_SG
from fastvec.models.dictionary import Dictionary
from fastvec.models.fasttext import FastText
from fastvec.models.matrix import DenseMatrix

module_path = os.path.dirname(__file__)  # needed because sample data files are located in the same folder

common_counts = [
    ('</s>', 7),
    ('human', 6),
    ('interface', 5),
    ('computer', 4),
    ('survey', 3),
    ('system', 2),
    ('graph', 1),
]


def datapath(fname):
    """Get full path for file `fname` in test data directory placed in this module directory."""
    return os.path.join(module_path, 'test_data', fname)


@contextlib.contextmanager
def temporary_file(name=""):
    """This context manager creates file `name` in temporary directory and returns its full path.

    Temporary directory with included files will be deleted at the end of context. Note, it won't create file.

    """
    tmp = tempfile.mkdtemp()
    try:
        yield os.path.join(tmp, name)
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def build_model(counts=None, dim=4, bucket=20, minn=3, maxn=4, loss=LOSS_HS, model=MODEL_SG, seed=42, **kwargs):
    """Build a small random dense model in memory.

    Parameters
    ----------
    counts : list of (str, int), optional
        Vocabulary with frequencies; tokens starting with ``__label__`` become labels.
        Defaults to :data:`common_counts`.

    Returns
    -------
    :class:`~fastvec.models.fasttext.FastText`
        The model, with an output layer of one row per target (labels when supervised, else words).

    """
    args = Args(dim=dim, bucket=bucket, minn=minn, maxn=maxn, loss=loss, model=model, **kwargs)
    dictionary = Dictionary(args)
    for word, count in (counts if counts is not None else common_counts):
        for _ in range(count):
            dictionary.add(word)
    dictionary.threshold(1, 1)

    rand = np.random.RandomState(seed)
    input_matrix = DenseMatrix(vectors=rand.uniform(-1, 1, (dictionary.nwords + bucket, dim)))
    targets = dictionary.nlabels if args.supervised else dictionary.nwords
    output_matrix = DenseMatrix(vectors=rand.uniform(-1, 1, (targets, dim)))
    return FastText(args, dictionary, input_matrix, output_matrix)
