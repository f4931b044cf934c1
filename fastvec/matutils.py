#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Authors: Fastvec Contributors
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""Math helpers for dense vectors."""

import logging

import numpy as np
import scipy.linalg

logger = logging.getLogger(__name__)


def blas(name, ndarray):
    """Helper for getting the appropriate BLAS function, using :func:`scipy.linalg.get_blas_funcs`.

    Parameters
    ----------
    name : str
        Name(s) of BLAS functions, without the type prefix.
    ndarray : numpy.ndarray
        Arrays can be given to determine optimal prefix of BLAS routines.

    Returns
    -------
    object
        BLAS function for the needed operation on the given data type.

    """
    return scipy.linalg.get_blas_funcs((name,), (ndarray,))[0]


def argsort(x, topn=None, reverse=False):
    """Efficiently calculate indices of the `topn` smallest elements in array `x`.

    Parameters
    ----------
    x : array_like
        Array to get the smallest element indices from.
    topn : int, optional
        Number of indices of the smallest (greatest) elements to be returned.
        If not given, indices of all elements will be returned in ascending (descending) order.
    reverse : bool, optional
        Return the `topn` greatest elements in descending order,
        instead of smallest elements in ascending order?

    Returns
    -------
    numpy.ndarray
        Array of `topn` indices that sort the array in the requested order.

    """
    x = np.asarray(x)  # unify code path for when `x` is not a np array (list, tuple...)
    if topn is None:
        topn = x.size
    if topn <= 0:
        return []
    if reverse:
        x = -x
    if topn >= x.size:
        return np.argsort(x, kind='stable')[:topn]
    most_extreme = np.argpartition(x, topn)[:topn]
    return most_extreme.take(np.argsort(x.take(most_extreme), kind='stable'))  # resort topn into order


def vecnorm(vec):
    """Euclidean (L2) length of a dense 1-D vector."""
    vec = np.asarray(vec)
    if not vec.size:
        return 0.0
    return float(blas('nrm2', vec)(vec))


def unitvec(vec, return_norm=False):
    """Scale a dense vector to unit L2 length.

    Parameters
    ----------
    vec : numpy.ndarray
        Input vector. It is not modified.
    return_norm : bool, optional
        Return the length of vector `vec`, in addition to the normalized vector itself?

    Returns
    -------
    numpy.ndarray
        Normalized copy of `vec`, in the same dtype.
    float
        Length of `vec` before normalization, if `return_norm` is set.

    Notes
    -----
    Zero-vector will be unchanged.

    """
    vec = np.asarray(vec)
    if np.issubdtype(vec.dtype, np.integer):
        vec = vec.astype(np.float32)
    veclen = vecnorm(vec)
    if veclen > 0.0:
        result = blas('scal', vec)(1.0 / veclen, vec.copy()).astype(vec.dtype)
    else:
        result = vec.copy()
    if return_norm:
        return result, veclen
    return result
