#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Authors: Fastvec Contributors
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""Low-level codec for the native fastText binary format.

A model file is a single stream of fixed-width fields in native byte order::

    [magic:int32][version:int32][Args][Dictionary][quant:bool][QuantizedMatrix | DenseMatrix]

optionally followed by the output layer as ``[qout:bool][QuantizedMatrix | DenseMatrix]``.
This module reads and writes the primitive pieces of that stream; the structures built from them
live in :mod:`~fastvec.models.args`, :mod:`~fastvec.models.dictionary` and
:mod:`~fastvec.models.matrix`, and the whole protocol is driven by
:class:`~fastvec.models.fasttext.FastText`.

See Also
--------

`FB Implementation <https://github.com/facebookresearch/fastText/blob/master/src/fasttext.cc>`_.

"""

import io
import logging
import struct

import numpy as np

from fastvec import utils

logger = logging.getLogger(__name__)

# Constants for FastText version and FastText file format magic (both int32)
FASTTEXT_VERSION = np.int32(12)
FASTTEXT_FILEFORMAT_MAGIC = np.int32(793712314)

_END_OF_WORD_MARKER = b'\x00'

REAL = np.dtype(np.float32)


class FastTextFormatError(ValueError):
    """The stream is not a model this implementation can reconstruct."""


def struct_unpack(fin, fmt):
    """Read and unpack the fields described by `fmt` from the binary stream `fin`.

    Raises
    ------
    FastTextFormatError
        If the stream ends before all fields were read.

    """
    num_bytes = struct.calcsize(fmt)
    data = fin.read(num_bytes)
    if len(data) != num_bytes:
        raise FastTextFormatError(
            'unexpected end of file in %s: expected %i bytes, got %i' % (utils.file_name(fin), num_bytes, len(data))
        )
    return struct.unpack(fmt, data)


def struct_pack(fout, fmt, *values):
    fout.write(struct.pack(fmt, *values))


def check_model(fin):
    """Read the file signature and return the format version.

    Parameters
    ----------
    fin : file
        Binary stream positioned at the start of a model.

    Returns
    -------
    int
        The version stored in the file, never greater than :data:`FASTTEXT_VERSION`.

    Raises
    ------
    FastTextFormatError
        On a wrong magic number or a version newer than this implementation supports.

    """
    magic, = struct_unpack(fin, '@i')
    if magic != FASTTEXT_FILEFORMAT_MAGIC:
        raise FastTextFormatError(
            '%s has wrong file format: magic number %i, expected %i' % (
                utils.file_name(fin), magic, FASTTEXT_FILEFORMAT_MAGIC,
            )
        )
    version, = struct_unpack(fin, '@i')
    if version > FASTTEXT_VERSION:
        raise FastTextFormatError(
            '%s has unsupported format version %i, the maximum supported version is %i' % (
                utils.file_name(fin), version, FASTTEXT_VERSION,
            )
        )
    return version


def sign_model(fout):
    """Write the magic number and the current format version to `fout`."""
    fout.write(FASTTEXT_FILEFORMAT_MAGIC.tobytes())
    fout.write(FASTTEXT_VERSION.tobytes())


def read_bool(fin):
    return bool(struct_unpack(fin, '@?')[0])


def write_bool(fout, value):
    struct_pack(fout, '@?', bool(value))


def read_word(fin, encoding='utf-8'):
    """Read a NUL-terminated string.

    Invalid byte sequences are kept as backslash escapes instead of failing the whole load.

    """
    word_bytes = io.BytesIO()
    char_byte = fin.read(1)
    while char_byte != _END_OF_WORD_MARKER:
        if not char_byte:
            raise FastTextFormatError('unexpected end of file in %s while reading a word' % utils.file_name(fin))
        word_bytes.write(char_byte)
        char_byte = fin.read(1)

    word_bytes = word_bytes.getvalue()
    try:
        word = word_bytes.decode(encoding)
    except UnicodeDecodeError:
        word = word_bytes.decode(encoding, errors='backslashreplace')
        logger.error(
            'failed to decode invalid unicode bytes %r; replacing invalid characters, using %r',
            word_bytes, word
        )
    return word


def write_word(fout, word, encoding='utf-8'):
    fout.write(word.encode(encoding))
    fout.write(_END_OF_WORD_MARKER)


def read_array(fin, dtype, count):
    """Read `count` items of `dtype` into a new writable array."""
    dtype = np.dtype(dtype)
    num_bytes = int(count) * dtype.itemsize
    data = fin.read(num_bytes)
    if len(data) != num_bytes:
        raise FastTextFormatError(
            'unexpected end of file in %s: expected %i array bytes, got %i' % (
                utils.file_name(fin), num_bytes, len(data),
            )
        )
    return np.frombuffer(data, dtype=dtype, count=int(count)).copy()


def write_array(fout, array, dtype):
    fout.write(np.ascontiguousarray(array, dtype=dtype).tobytes())


def read_floats(fin, count):
    return read_array(fin, REAL, count)


def write_floats(fout, array):
    write_array(fout, array, REAL)


def at_eof(fin):
    """Check whether `fin` is exhausted, without consuming anything when it is not."""
    if fin.seekable():
        position = fin.tell()
        exhausted = fin.read(1) == b''
        fin.seek(position)
        return exhausted
    peek = getattr(fin, 'peek', None)
    if peek is not None:
        return peek(1) == b''
    raise io.UnsupportedOperation('cannot look ahead in %s' % utils.file_name(fin))
