#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Authors: Fastvec Contributors
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""Hyperparameters of a fastText model, as stored in the header of the binary format."""

import copy
import logging

from fastvec.models._fasttext_bin import struct_pack, struct_unpack

logger = logging.getLogger(__name__)

# `model` => cbow:1, sg:2, sup:3
MODEL_CBOW = 1
MODEL_SG = 2
MODEL_SUP = 3

# `loss` => hs:1, ns:2, softmax:3, one-vs-all:4
LOSS_HS = 1
LOSS_NS = 2
LOSS_SOFTMAX = 3
LOSS_OVA = 4

# Serialized fields, in on-disk order.
# See https://github.com/facebookresearch/fastText/blob/master/src/args.cc
_HEADER_FORMAT = [
    ('dim', 'i'),
    ('ws', 'i'),
    ('epoch', 'i'),
    ('min_count', 'i'),
    ('neg', 'i'),
    ('word_ngrams', 'i'),
    ('loss', 'i'),
    ('model', 'i'),
    ('bucket', 'i'),
    ('minn', 'i'),
    ('maxn', 'i'),
    ('lr_update_rate', 'i'),
    ('t', 'd'),
]

_DEFAULTS = {
    'dim': 100,
    'ws': 5,
    'epoch': 5,
    'min_count': 5,
    'neg': 5,
    'word_ngrams': 1,
    'loss': LOSS_NS,
    'model': MODEL_SG,
    'bucket': 2000000,
    'minn': 3,
    'maxn': 6,
    'lr_update_rate': 100,
    't': 1e-4,
    # not serialized
    'label': '__label__',
    'output': '',
    'seed': 0,
}


class Args(object):
    """Configuration record of a model.

    Parameters
    ----------
    dim : int
        The dimensionality of the vectors.
    ws : int
        The window size.
    epoch : int
        The number of training epochs.
    min_count : int
        The threshold below which the model ignores terms.
    neg : int
        Number of negatives sampled per positive.
    word_ngrams : int
        Max length of word ngrams.
    loss : int
        One of :data:`LOSS_HS`, :data:`LOSS_NS`, :data:`LOSS_SOFTMAX`, :data:`LOSS_OVA`.
    model : int
        One of :data:`MODEL_CBOW`, :data:`MODEL_SG`, :data:`MODEL_SUP`.
    bucket : int
        The number of hash buckets for subword ngrams.
    minn : int
        The minimum ngram length, in characters.
    maxn : int
        The maximum ngram length, in characters. Zero disables subwords.
    lr_update_rate : int
        Rate of learning rate updates.
    t : float
        The sample threshold.
    label : str
        Prefix that marks a token as a label. Not stored in the binary.
    output : str
        Path prefix for files written by the model. Not stored in the binary.
    seed : int
        Seed for random initialization and shuffling. Not stored in the binary.

    """
    def __init__(self, **kwargs):
        unknown = set(kwargs) - set(_DEFAULTS)
        if unknown:
            raise TypeError('unknown Args fields: %s' % ', '.join(sorted(unknown)))
        for name, default in _DEFAULTS.items():
            setattr(self, name, kwargs.get(name, default))

    @classmethod
    def load(cls, fin):
        """Read the header fields from the binary stream `fin`."""
        fields = {name: struct_unpack(fin, '@' + fmt)[0] for (name, fmt) in _HEADER_FORMAT}
        return cls(**fields)

    def save(self, fout):
        """Write the header fields to the binary stream `fout`."""
        for name, fmt in _HEADER_FORMAT:
            struct_pack(fout, '@' + fmt, getattr(self, name))

    def copy(self):
        return copy.copy(self)

    @property
    def supervised(self):
        return self.model == MODEL_SUP

    def __eq__(self, other):
        if not isinstance(other, Args):
            return NotImplemented
        return all(getattr(self, name) == getattr(other, name) for name in _DEFAULTS)

    def __repr__(self):
        return '%s(%s)' % (
            self.__class__.__name__,
            ', '.join('%s=%r' % (name, getattr(self, name)) for name, _ in _HEADER_FORMAT),
        )
