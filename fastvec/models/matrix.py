#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Authors: Fastvec Contributors
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""Row stores for embedding matrices.

Both stores expose the one capability vector aggregation needs, ``add_to_vector(vec, i, scale)``,
so callers never look at the storage layout:

* :class:`DenseMatrix` keeps float32 rows;
* :class:`QuantizedMatrix` keeps 8-bit product-quantization codes and decodes rows on the fly.

Usage examples
--------------

.. sourcecode:: pycon

    >>> import numpy as np
    >>> from fastvec.models.matrix import DenseMatrix
    >>>
    >>> m = DenseMatrix(vectors=np.eye(3, dtype=np.float32))
    >>> vec = np.zeros(3, dtype=np.float32)
    >>> m.add_to_vector(vec, 1, 2.0)
    >>> vec
    array([0., 2., 0.], dtype=float32)

"""

import logging

import numpy as np
from scipy.cluster.vq import kmeans2, vq

from fastvec import utils
from fastvec.models._fasttext_bin import (
    FastTextFormatError, read_array, read_bool, read_floats, struct_pack, struct_unpack,
    write_array, write_bool, write_floats,
)

logger = logging.getLogger(__name__)

REAL = np.float32


class DenseMatrix(object):
    """A dense `m` x `n` matrix of float32 values.

    Parameters
    ----------
    m : int, optional
        Number of rows.
    n : int, optional
        Number of columns.
    vectors : numpy.ndarray, optional
        Existing 2-D data to wrap instead of allocating zeros. Converted to float32.

    """
    quantized = False

    def __init__(self, m=0, n=0, vectors=None):
        if vectors is None:
            vectors = np.zeros((m, n), dtype=REAL)
        vectors = np.ascontiguousarray(vectors, dtype=REAL)
        if vectors.ndim != 2:
            raise ValueError('expected a 2-D array, got shape %r' % (vectors.shape,))
        self.vectors = vectors

    @property
    def shape(self):
        return self.vectors.shape

    def __len__(self):
        return self.vectors.shape[0]

    def __getitem__(self, i):
        return self.vectors[i]

    def zero(self):
        self.vectors.fill(0.0)

    def uniform(self, bound, seed=0):
        """Fill the matrix with values drawn uniformly from ``[-bound, bound]``."""
        rand = utils.get_random_state(seed)
        self.vectors[...] = rand.uniform(-bound, bound, self.vectors.shape).astype(REAL)

    def add_to_vector(self, vec, i, scale=1.0):
        """Add row `i`, times `scale`, to `vec` in place."""
        if scale == 1.0:
            vec += self.vectors[i]
        else:
            vec += REAL(scale) * self.vectors[i]

    def add_vector_to_row(self, vec, i, scale=1.0):
        """Add `vec`, times `scale`, to row `i` in place."""
        self.vectors[i] += REAL(scale) * np.asarray(vec, dtype=REAL)

    def l2_norm_rows(self):
        return np.linalg.norm(self.vectors, axis=1).astype(REAL)

    def rows(self, idx):
        """A new matrix made of the rows `idx`, in that order."""
        return DenseMatrix(vectors=self.vectors[np.asarray(idx, dtype=np.int64)])

    @classmethod
    def load(cls, fin):
        m, n = struct_unpack(fin, '@2q')
        if m < 0 or n < 0:
            raise FastTextFormatError('invalid matrix shape %ix%i in %s' % (m, n, utils.file_name(fin)))
        return cls(vectors=read_floats(fin, m * n).reshape((m, n)))

    def save(self, fout):
        struct_pack(fout, '@2q', *self.vectors.shape)
        write_floats(fout, self.vectors)

    def __eq__(self, other):
        if not isinstance(other, DenseMatrix):
            return NotImplemented
        return self.shape == other.shape and np.array_equal(self.vectors, other.vectors)

    def __repr__(self):
        return '%s(%ix%i)' % ((self.__class__.__name__,) + self.shape)


class ProductQuantizer(object):
    """Product quantizer with 8-bit codes.

    A `dim`-dimensional vector is cut into `nsubq` consecutive sub-vectors of `dsub` values
    (the last one holds the remaining `lastdsub` values). Each sub-vector is replaced by the index
    of its nearest centroid among 256 centroids learned for that position.

    Parameters
    ----------
    dim : int
        Dimensionality of the quantized vectors.
    dsub : int
        Dimensionality of each sub-vector.

    """
    nbits = 8
    ksub = 1 << nbits
    max_points_per_cluster = 256
    max_points = max_points_per_cluster * ksub
    niter = 25

    def __init__(self, dim=0, dsub=0):
        self.dim = dim
        self.dsub = dsub
        if dsub > 0:
            self.nsubq = dim // dsub
            self.lastdsub = dim % dsub
            if self.lastdsub == 0:
                self.lastdsub = dsub
            else:
                self.nsubq += 1
        else:
            self.nsubq = 0
            self.lastdsub = 0
        self.centroids = np.zeros(dim * self.ksub, dtype=REAL)

    def _subvector_size(self, m):
        return self.lastdsub if m == self.nsubq - 1 else self.dsub

    def _centroids_offset(self, m, code):
        code = int(code)  # codes are uint8
        if m == self.nsubq - 1:
            return m * self.ksub * self.dsub + code * self.lastdsub
        return (m * self.ksub + code) * self.dsub

    def get_centroids(self, m, code):
        """Centroid number `code` of sub-quantizer `m`, as a view into the centroid table."""
        offset = self._centroids_offset(m, code)
        return self.centroids[offset:offset + self._subvector_size(m)]

    def _centroid_block(self, m):
        d = self._subvector_size(m)
        start = m * self.ksub * self.dsub
        return self.centroids[start:start + self.ksub * d].reshape((self.ksub, d))

    def add_code(self, vec, codes, t, alpha=1.0):
        """Add the decoded row `t` of the code table `codes`, times `alpha`, to `vec` in place."""
        row = codes[self.nsubq * t:self.nsubq * (t + 1)]
        for m in range(self.nsubq):
            start = m * self.dsub
            centroid = self.get_centroids(m, row[m])
            vec[start:start + len(centroid)] += REAL(alpha) * centroid

    def train(self, data, seed=1234):
        """Learn the centroids of every sub-quantizer from the rows of `data` with k-means.

        Raises
        ------
        ValueError
            If `data` has fewer rows than there are centroids.

        """
        data = np.asarray(data, dtype=REAL)
        n = data.shape[0]
        if n < self.ksub:
            raise ValueError(
                'matrix too small for quantization, must have at least %i rows, got %i' % (self.ksub, n)
            )
        rand = utils.get_random_state(seed)
        perm = rand.permutation(n)
        if n > self.max_points:
            perm = perm[:self.max_points]
        for m in range(self.nsubq):
            start = m * self.dsub
            d = self._subvector_size(m)
            sample = data[perm, start:start + d].astype(np.float64)
            centroids, _ = kmeans2(sample, self.ksub, iter=self.niter, minit='points', seed=rand, missing='warn')
            self._centroid_block(m)[...] = centroids.astype(REAL)

    def compute_codes(self, data):
        """Code every row of `data` by its nearest centroids, returning a flat uint8 array."""
        data = np.asarray(data, dtype=REAL)
        codes = np.zeros((data.shape[0], self.nsubq), dtype=np.uint8)
        for m in range(self.nsubq):
            start = m * self.dsub
            d = self._subvector_size(m)
            codes[:, m], _ = vq(data[:, start:start + d], self._centroid_block(m), check_finite=False)
        return codes.ravel()

    @classmethod
    def load(cls, fin):
        result = cls()
        result.dim, result.nsubq, result.dsub, result.lastdsub = struct_unpack(fin, '@4i')
        result.centroids = read_floats(fin, result.dim * cls.ksub)
        return result

    def save(self, fout):
        struct_pack(fout, '@4i', self.dim, self.nsubq, self.dsub, self.lastdsub)
        write_floats(fout, self.centroids)


class QuantizedMatrix(object):
    """Product-quantized version of a :class:`DenseMatrix`.

    Parameters
    ----------
    matrix : :class:`DenseMatrix`, optional
        The matrix to compress. If not given, an empty matrix is created (used by :meth:`load`).
    dsub : int, optional
        Dimensionality of the sub-vectors coded together.
    qnorm : bool, optional
        Normalize the rows and quantize their norms separately.
    seed : int, optional
        Seed for the k-means sampling.

    """
    quantized = True

    def __init__(self, matrix=None, dsub=2, qnorm=False, seed=1234):
        self.qnorm = qnorm
        self.m = 0
        self.n = 0
        self.codes = np.zeros(0, dtype=np.uint8)
        self.pq = None
        self.norm_codes = np.zeros(0, dtype=np.uint8)
        self.npq = None
        if matrix is not None:
            self.m, self.n = matrix.shape
            self.pq = ProductQuantizer(self.n, dsub)
            if qnorm:
                self.npq = ProductQuantizer(1, 1)
            self._quantize(matrix.vectors, seed)

    @property
    def shape(self):
        return self.m, self.n

    def __len__(self):
        return self.m

    @property
    def codesize(self):
        return len(self.codes)

    def _quantize(self, vectors, seed):
        data = np.array(vectors, dtype=REAL)
        if self.qnorm:
            norms = np.linalg.norm(data, axis=1).astype(REAL)
            nonzero = norms > 0
            data[nonzero] /= norms[nonzero, None]
            self.npq.train(norms.reshape((-1, 1)), seed=seed)
            self.norm_codes = self.npq.compute_codes(norms.reshape((-1, 1)))
        self.pq.train(data, seed=seed)
        self.codes = self.pq.compute_codes(data)
        logger.info("quantized %ix%i matrix into %i codes", self.m, self.n, self.codesize)

    def add_to_vector(self, vec, t, scale=1.0):
        """Add the decoded row `t`, times `scale`, to `vec` in place."""
        norm = 1.0
        if self.qnorm:
            norm = self.npq.get_centroids(0, self.norm_codes[t])[0]
        self.pq.add_code(vec, self.codes, t, scale * norm)

    def __getitem__(self, t):
        vec = np.zeros(self.n, dtype=REAL)
        self.add_to_vector(vec, t)
        return vec

    def to_dense(self):
        vectors = np.zeros((self.m, self.n), dtype=REAL)
        for t in range(self.m):
            self.add_to_vector(vectors[t], t)
        return DenseMatrix(vectors=vectors)

    @classmethod
    def load(cls, fin):
        result = cls()
        result.qnorm = read_bool(fin)
        result.m, result.n = struct_unpack(fin, '@2q')
        codesize, = struct_unpack(fin, '@i')
        result.codes = read_array(fin, np.uint8, codesize)
        result.pq = ProductQuantizer.load(fin)
        if result.qnorm:
            result.norm_codes = read_array(fin, np.uint8, result.m)
            result.npq = ProductQuantizer.load(fin)
        if codesize != result.m * result.pq.nsubq:
            raise FastTextFormatError(
                'quantized matrix in %s declares %i codes, expected %i' % (
                    utils.file_name(fin), codesize, result.m * result.pq.nsubq,
                )
            )
        return result

    def save(self, fout):
        write_bool(fout, self.qnorm)
        struct_pack(fout, '@2q', self.m, self.n)
        struct_pack(fout, '@i', self.codesize)
        write_array(fout, self.codes, np.uint8)
        self.pq.save(fout)
        if self.qnorm:
            write_array(fout, self.norm_codes, np.uint8)
            self.npq.save(fout)

    def __repr__(self):
        return '%s(%ix%i, qnorm=%r)' % (self.__class__.__name__, self.m, self.n, self.qnorm)
