#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Authors: Fastvec Contributors
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""The shallow network behind a fastText model, reduced to what inference needs.

:class:`Model` owns

* precomputed sigmoid and log tables,
* the hidden-layer aggregator, which averages input matrix rows,
* the structures used by the output layer: a Huffman-style coding tree for hierarchical softmax
  and a shuffled table for negative sampling. Both are built once from the target frequencies
  and never change afterwards.

Examples
--------

.. sourcecode:: pycon

    >>> import numpy as np
    >>> from fastvec.models.args import Args, LOSS_HS
    >>> from fastvec.models.matrix import DenseMatrix
    >>> from fastvec.models.model import Model
    >>>
    >>> args = Args(dim=2, loss=LOSS_HS)
    >>> model = Model(DenseMatrix(vectors=np.array([[1, 2], [3, 4]])), args)
    >>> model.compute_hidden([0, 1])
    array([2., 3.], dtype=float32)
    >>> model.set_target_counts([1, 2, 3])
    >>> model.paths[0], model.codes[0]
    ([0, 1], [False, True])

"""

import logging

import numpy as np

from fastvec import utils
from fastvec.models.args import LOSS_HS, LOSS_NS

logger = logging.getLogger(__name__)

REAL = np.float32

SIGMOID_TABLE_SIZE = 512
MAX_SIGMOID = 8
LOG_TABLE_SIZE = 512
NEGATIVE_TABLE_SIZE = 10000000

TIE_BREAK_LEAF = 'leaf'
TIE_BREAK_NODE = 'node'


class Node(object):
    """One node of the coding tree. Leaves hold the target counts, inner nodes their sums."""
    __slots__ = ('parent', 'left', 'right', 'count', 'binary')

    def __init__(self, count):
        self.parent = -1
        self.left = -1
        self.right = -1
        self.count = count
        self.binary = False

    def __repr__(self):
        return 'Node(parent=%r, left=%r, right=%r, count=%r, binary=%r)' % (
            self.parent, self.left, self.right, self.count, self.binary,
        )


class Model(object):
    """Hidden-layer aggregation over an embedding store, plus the output-layer lookup structures.

    Parameters
    ----------
    wi : {:class:`~fastvec.models.matrix.DenseMatrix`, :class:`~fastvec.models.matrix.QuantizedMatrix`}
        The input embedding matrix. Only its ``add_to_vector`` capability is used.
    args : :class:`~fastvec.models.args.Args`
        Model parameters; `dim` and `loss` are used.
    seed : int, optional
        Seed for shuffling the negative-sampling table.

    """
    def __init__(self, wi, args, seed=0):
        self.wi = wi
        self.args = args
        self.hsz = args.dim
        self.seed = seed
        self.quant = wi.quantized
        self.loss = 0.0
        self.nexamples = 1

        self.negatives = np.zeros(0, dtype=np.int32)
        self.negpos = 0
        self.osz = 0
        self.tree = []
        self.paths = []
        self.codes = []

        self.t_sigmoid = self._init_sigmoid()
        self.t_log = self._init_log()

    @staticmethod
    def _init_sigmoid():
        x = np.arange(SIGMOID_TABLE_SIZE + 1, dtype=np.float64) * 2 * MAX_SIGMOID / SIGMOID_TABLE_SIZE - MAX_SIGMOID
        return (1.0 / (1.0 + np.exp(-x))).astype(REAL)

    @staticmethod
    def _init_log():
        x = (np.arange(LOG_TABLE_SIZE + 1, dtype=np.float64) + 1e-5) / LOG_TABLE_SIZE
        return np.log(x).astype(REAL)

    def sigmoid(self, x):
        """Table lookup of the logistic function, saturating outside ``[-MAX_SIGMOID, MAX_SIGMOID]``."""
        if x < -MAX_SIGMOID:
            return 0.0
        if x > MAX_SIGMOID:
            return 1.0
        i = int((x + MAX_SIGMOID) * SIGMOID_TABLE_SIZE / MAX_SIGMOID / 2)
        return float(self.t_sigmoid[i])

    def log(self, x):
        """Table lookup of the natural logarithm on ``(0, 1]``; zero above 1."""
        if x > 1.0:
            return 0.0
        return float(self.t_log[int(x * LOG_TABLE_SIZE)])

    def get_loss(self):
        return self.loss / self.nexamples

    def compute_hidden(self, ids, hidden=None):
        """Average the input rows `ids` into `hidden`.

        Parameters
        ----------
        ids : list of int
            Input matrix rows. Must not be empty.
        hidden : numpy.ndarray, optional
            Output buffer of size `dim`. A new one is allocated if not given.

        Returns
        -------
        numpy.ndarray
            The `hidden` buffer.

        Raises
        ------
        ValueError
            If `ids` is empty or `hidden` has the wrong size.

        """
        if hidden is None:
            hidden = np.zeros(self.hsz, dtype=REAL)
        elif hidden.shape != (self.hsz,):
            raise ValueError('hidden vector has shape %r, expected (%i,)' % (hidden.shape, self.hsz))
        if not len(ids):
            raise ValueError('cannot compute a hidden vector from an empty list of input ids')
        hidden.fill(0.0)
        for i in ids:
            self.wi.add_to_vector(hidden, i)
        hidden *= REAL(1.0 / len(ids))
        return hidden

    def set_target_counts(self, counts):
        """Build the output-layer structure the configured loss needs from target frequencies."""
        self.osz = len(counts)
        if self.args.loss == LOSS_NS:
            self.init_table_negatives(counts)
        elif self.args.loss == LOSS_HS:
            self.build_tree(counts)

    def init_table_negatives(self, counts, table_size=NEGATIVE_TABLE_SIZE):
        """Fill the negative-sampling table and shuffle it.

        Target ``i`` appears ``floor(sqrt(counts[i]) * table_size / z)`` times, where `z` is the sum of
        ``sqrt(counts)``.

        Raises
        ------
        ValueError
            If `counts` is empty or sums to zero.

        """
        counts = np.asarray(counts, dtype=np.float64)
        if not counts.size:
            raise ValueError('cannot build a negative sampling table from empty counts')
        powered = counts ** 0.5
        z = powered.sum()
        if z <= 0:
            raise ValueError('cannot build a negative sampling table from all-zero counts')
        repeats = np.floor(powered * table_size / z).astype(np.int64)
        self.negatives = np.repeat(np.arange(counts.size, dtype=np.int32), repeats)
        utils.get_random_state(self.seed).shuffle(self.negatives)
        self.negpos = 0
        logger.info("built negative sampling table of %i entries over %i targets", len(self.negatives), counts.size)

    def get_negative(self, target):
        """Draw the next entry of the negative table that differs from `target`."""
        while True:
            negative = int(self.negatives[self.negpos])
            self.negpos = (self.negpos + 1) % len(self.negatives)
            if negative != target:
                return negative

    def build_tree(self, counts, tie_break=TIE_BREAK_LEAF):
        """Build the binary coding tree for hierarchical softmax.

        Leaves ``[0, osz)`` hold `counts`, inner nodes ``[osz, 2 * osz - 1)`` are created in index order by
        merging the two cheapest available nodes. Leaves are consumed in ascending count order and inner
        nodes in creation order, so both fronts only move forward.

        Parameters
        ----------
        counts : list of int
            Target frequencies, indexed by leaf.
        tie_break : {'leaf', 'node'}, optional
            Which front to consume when the next leaf and the next inner node have equal counts.
            'node' gives the same tree as the reference trainer.

        Raises
        ------
        ValueError
            If `counts` is empty or `tie_break` is unknown.

        """
        if tie_break not in (TIE_BREAK_LEAF, TIE_BREAK_NODE):
            raise ValueError('unknown tie break policy %r' % (tie_break,))
        osz = len(counts)
        if osz == 0:
            raise ValueError('cannot build a tree over zero targets')
        self.osz = osz

        # larger than any real count
        sentinel = 1e15
        tree = [Node(sentinel) for _ in range(2 * osz - 1)]
        for i in range(osz):
            tree[i].count = counts[i]
        leaves = sorted(range(osz), key=lambda i: (counts[i], -i))

        def take_leaf(leaf, node):
            if leaf >= osz:
                return False
            if tie_break == TIE_BREAK_LEAF:
                return tree[leaves[leaf]].count <= tree[node].count
            return tree[leaves[leaf]].count < tree[node].count

        leaf = 0
        node = osz
        for i in range(osz, 2 * osz - 1):
            mini = [0, 0]
            for j in range(2):
                if take_leaf(leaf, node):
                    mini[j] = leaves[leaf]
                    leaf += 1
                else:
                    mini[j] = node
                    node += 1
            tree[i].left = mini[0]
            tree[i].right = mini[1]
            tree[i].count = tree[mini[0]].count + tree[mini[1]].count
            tree[mini[0]].parent = i
            tree[mini[1]].parent = i
            tree[mini[1]].binary = True

        paths, codes = [], []
        max_depth = 0
        for i in range(osz):
            path, code = [], []
            j = i
            while tree[j].parent != -1:
                path.append(tree[j].parent - osz)
                code.append(tree[j].binary)
                j = tree[j].parent
            paths.append(path)
            codes.append(code)
            max_depth = max(max_depth, len(path))

        self.tree, self.paths, self.codes = tree, paths, codes
        logger.info("built huffman tree over %i targets with maximum node depth %i", osz, max_depth)
