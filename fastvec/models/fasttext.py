#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Authors: Fastvec Contributors
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""
Introduction
------------
Query word representations learned by fastText: `Enriching Word Vectors with Subword Information
<https://arxiv.org/abs/1607.04606>`_.

This module loads models saved in Facebook's native binary format (`.bin`, or `.ftz` for
quantized models), computes vectors for in-vocabulary and out-of-vocabulary words from their
character ngrams, and writes them back out in binary or text form.

Usage examples
--------------

Load a model and look up vectors:

.. sourcecode:: pycon

    >>> from fastvec.models.fasttext import load_model
    >>>
    >>> model = load_model('/path/to/model.bin')  # doctest: +SKIP
    >>> vector = model['landlady']  # doctest: +SKIP
    >>> oov_vector = model['landlord']  # no need for the word to be in the vocabulary  # doctest: +SKIP

Write all word vectors in the text `.vec` format, or shrink the model:

.. sourcecode:: pycon

    >>> model.save_vectors('/tmp/model.vec')  # doctest: +SKIP
    >>> model.quantize(dsub=2, qnorm=True, cutoff=10000)  # doctest: +SKIP
    >>> model.save_model('/tmp/model.ftz')  # doctest: +SKIP

"""

import logging
import threading

import numpy as np

from fastvec import matutils, utils
from fastvec.models import _fasttext_bin
from fastvec.models._fasttext_bin import FastTextFormatError
from fastvec.models.args import Args, MODEL_SUP
from fastvec.models.dictionary import Dictionary, EOS, ENTRY_LABEL, ENTRY_WORD
from fastvec.models.matrix import DenseMatrix, QuantizedMatrix
from fastvec.models.model import Model

logger = logging.getLogger(__name__)

REAL = np.float32


def _disable_supervised_char_ngrams(args):
    """Supervised models saved before version 12 were trained without char ngrams."""
    if args.model == MODEL_SUP:
        args.maxn = 0


# Compatibility fixups applied to the Args of a file, keyed by the file's format version.
_VERSION_FIXUPS = {
    11: [_disable_supervised_char_ngrams],
}


def _format_vector(vec):
    return ' '.join('%.5g' % val for val in vec)


def _load_matrix(fin, quantized):
    if quantized:
        return QuantizedMatrix.load(fin)
    return DenseMatrix.load(fin)


class FastText(object):
    """A loaded fastText model.

    Parameters
    ----------
    args : :class:`~fastvec.models.args.Args`, optional
        Model parameters. Defaults are used if not given.
    dictionary : :class:`~fastvec.models.dictionary.Dictionary`, optional
        The vocabulary. An empty one is created if not given.
    input_matrix : {:class:`~fastvec.models.matrix.DenseMatrix`, :class:`~fastvec.models.matrix.QuantizedMatrix`}, optional
        Word and ngram vectors, ``nwords + bucket`` rows of `args.dim` values.
    output_matrix : {:class:`~fastvec.models.matrix.DenseMatrix`, :class:`~fastvec.models.matrix.QuantizedMatrix`}, optional
        The output layer, if known.

    Attributes
    ----------
    version : int
        Format version of the file the model was loaded from.
    model : :class:`~fastvec.models.model.Model`
        Aggregator bound to the input matrix. None until an input matrix is available.

    Notes
    -----
    The model is not modified by queries once constructed, so lookups may run concurrently
    from several threads. The only exception is the cache of normalized word vectors that
    :meth:`get_nn` fills on first use, which is built under a lock.
    :meth:`load_vectors` and :meth:`quantize` replace the model state and must not run
    concurrently with anything else.

    """
    def __init__(self, args=None, dictionary=None, input_matrix=None, output_matrix=None):
        self.args = args if args is not None else Args()
        self.dictionary = dictionary if dictionary is not None else Dictionary(self.args)
        self.input = input_matrix
        self.output = output_matrix
        self.version = int(_fasttext_bin.FASTTEXT_VERSION)
        self.model = None
        self._word_vectors = None
        self._word_vectors_lock = threading.Lock()
        if input_matrix is not None:
            self._init_model()

    @property
    def quant(self):
        """Is the input matrix quantized?"""
        return self.input is not None and self.input.quantized

    def _init_model(self):
        """Check the input matrix against the parameters and bind a new aggregator to it."""
        rows, dim = self.input.shape
        if dim != self.args.dim:
            raise FastTextFormatError(
                'mismatch between vector size in model params (%i) and input matrix (%i)' % (self.args.dim, dim)
            )
        if self.dictionary.is_pruned():
            expected_rows = self.dictionary.nwords + self.dictionary.pruneidx_size
        else:
            expected_rows = self.dictionary.nwords + self.args.bucket
        if rows < expected_rows:
            raise FastTextFormatError(
                'input matrix has %i rows, but the dictionary needs %i' % (rows, expected_rows)
            )
        if rows > expected_rows:
            logger.warning("input matrix has %i rows, expected %i; ignoring the rest", rows, expected_rows)

        self.model = Model(self.input, self.args, seed=self.args.seed)
        self._word_vectors = None
        counts = self.dictionary.get_counts(ENTRY_LABEL if self.args.supervised else ENTRY_WORD)
        if any(counts):
            self.model.set_target_counts(counts)

    def _require_model(self):
        if self.model is None:
            raise ValueError('the model has no input matrix; load a model or pretrained vectors first')

    #
    # Serialization
    #
    def load_model(self, fname_or_handle, encoding='utf-8', full_model=True):
        """Load a model in Facebook's native binary format, replacing the current state.

        Parameters
        ----------
        fname_or_handle : {str, file}
            Path of the `.bin` / `.ftz` file, or a readable binary stream. Paths are opened with
            `smart_open`, so they may be remote or compressed.
        encoding : str, optional
            Encoding of the words in the dictionary.
        full_model : bool, optional
            If False, skip the output layer even if the file contains one.

        Returns
        -------
        :class:`FastText`
            This model.

        Raises
        ------
        :class:`~fastvec.models._fasttext_bin.FastTextFormatError`
            If the stream is not a model this implementation can reconstruct.
        OSError
            If the file cannot be read.

        """
        if isinstance(fname_or_handle, str):
            logger.info("loading fastText model from %s", fname_or_handle)
            with utils.open(fname_or_handle, 'rb') as fin:
                self._load_stream(fin, encoding, full_model)
        else:
            self._load_stream(fname_or_handle, encoding, full_model)
        return self

    def _load_stream(self, fin, encoding, full_model):
        version = _fasttext_bin.check_model(fin)
        args = Args.load(fin)
        for fixup in _VERSION_FIXUPS.get(version, ()):
            fixup(args)
        dictionary = Dictionary.load(fin, args, encoding=encoding)

        quant_input = _fasttext_bin.read_bool(fin)
        input_matrix = _load_matrix(fin, quant_input)
        if not quant_input and dictionary.is_pruned():
            raise FastTextFormatError(
                'invalid model file %s: the dictionary is pruned but the input matrix is not quantized, '
                'which cannot be reconstructed; see issue #332 of the fastText project and download an updated model'
                % utils.file_name(fin)
            )

        output_matrix = None
        if full_model and not _fasttext_bin.at_eof(fin):
            quant_output = _fasttext_bin.read_bool(fin)
            output_matrix = _load_matrix(fin, quant_output)

        self.args = args
        self.dictionary = dictionary
        self.input = input_matrix
        self.output = output_matrix
        self.version = version
        self._init_model()
        logger.info(
            "loaded %s input matrix (quantized=%s) for fastText model version %i from %s",
            input_matrix.shape, quant_input, version, utils.file_name(fin),
        )

    def save_model(self, fname_or_handle=None, encoding='utf-8'):
        """Save the model in Facebook's native binary format.

        Parameters
        ----------
        fname_or_handle : {str, file}, optional
            Output path or writable binary stream. Defaults to `args.output` plus `.ftz` for a quantized
            model or `.bin` otherwise.
        encoding : str, optional
            Encoding of the words in the dictionary.

        Returns
        -------
        {str, file}
            Where the model was written.

        """
        self._require_model()
        if fname_or_handle is None:
            fname_or_handle = self.args.output + ('.ftz' if self.quant else '.bin')
        if isinstance(fname_or_handle, str):
            logger.info("saving fastText model to %s", fname_or_handle)
            with utils.open(fname_or_handle, 'wb') as fout:
                self._save_stream(fout, encoding)
        else:
            self._save_stream(fname_or_handle, encoding)
        return fname_or_handle

    def _save_stream(self, fout, encoding):
        _fasttext_bin.sign_model(fout)
        self.args.save(fout)
        self.dictionary.save(fout, encoding=encoding)
        _fasttext_bin.write_bool(fout, self.quant)
        self.input.save(fout)
        if self.output is not None:
            _fasttext_bin.write_bool(fout, self.output.quantized)
            self.output.save(fout)

    #
    # Queries
    #
    def get_dimension(self):
        return self.args.dim

    def get_dictionary(self):
        return self.dictionary

    def get_words(self):
        """All vocabulary words, in id order."""
        return [self.dictionary.get_word(i) for i in range(self.dictionary.nwords)]

    def get_subwords(self, word):
        """Subword strings of `word` and their input matrix rows."""
        return self.dictionary.get_subword_strings(word)

    def __contains__(self, word):
        """Is `word` in the vocabulary? Vectors can be computed for any word regardless."""
        return word in self.dictionary

    def __getitem__(self, word):
        return self.get_vector(word)

    def get_vector(self, word):
        """Get the vector of `word`: the average of its subword rows.

        Words without a single subword row (out of vocabulary, and too short or with ngrams disabled)
        get the zero vector.

        Returns
        -------
        numpy.ndarray
            A new float32 vector of size `dim`.

        """
        self._require_model()
        ngrams = self.dictionary.get_subwords(word)
        if not ngrams:
            return np.zeros(self.args.dim, dtype=REAL)
        return self.model.compute_hidden(ngrams)

    def get_sentence_vector(self, words):
        """Average of the unit-normalized vectors of `words`; words with a zero vector are skipped."""
        svec = np.zeros(self.args.dim, dtype=REAL)
        count = 0
        for word in words:
            vec, norm = matutils.unitvec(self.get_vector(word), return_norm=True)
            if norm > 0:
                svec += vec
                count += 1
        if count > 0:
            svec *= REAL(1.0 / count)
        return svec

    def precompute_word_vectors(self, out=None):
        """Compute unit-length vectors for the whole vocabulary.

        Parameters
        ----------
        out : :class:`~fastvec.models.matrix.DenseMatrix`, optional
            Matrix with at least `nwords` rows of `dim` values to fill. Allocated if not given.

        Returns
        -------
        :class:`~fastvec.models.matrix.DenseMatrix`
            Row ``i`` holds the normalized vector of word ``i``; words with a zero vector keep a zero row.

        """
        nwords = self.dictionary.nwords
        if out is None:
            out = DenseMatrix(nwords, self.args.dim)
        elif out.shape[0] < nwords or out.shape[1] != self.args.dim:
            raise ValueError('output matrix has shape %r, expected (%i, %i)' % (out.shape, nwords, self.args.dim))
        out.zero()
        logger.info("pre-computing %i word vectors", nwords)
        for i in range(nwords):
            vec = self.get_vector(self.dictionary.get_word(i))
            norm = matutils.vecnorm(vec)
            if norm > 0:
                out.add_vector_to_row(vec, i, 1.0 / norm)
        logger.info("pre-computing word vectors done")
        return out

    def _normalized_word_vectors(self):
        """Get the cached output of :meth:`precompute_word_vectors`, computing it on first call."""
        with self._word_vectors_lock:
            if self._word_vectors is None:
                self._word_vectors = self.precompute_word_vectors()
            return self._word_vectors

    def get_nn(self, word, k=10):
        """Find the `k` vocabulary words closest to `word` by cosine similarity.

        Returns
        -------
        list of (float, str)
            Similarity and word, most similar first. `word` itself is excluded.

        Raises
        ------
        KeyError
            If `word` has no vector at all: not in the vocabulary and without any known ngram.

        """
        query, norm = matutils.unitvec(self.get_vector(word), return_norm=True)
        if norm == 0:
            raise KeyError("cannot compute a vector for word %r" % word)
        dists = self._normalized_word_vectors().vectors[:self.dictionary.nwords].dot(query)
        best = matutils.argsort(dists, topn=k + 1, reverse=True)
        result = [(float(dists[i]), self.dictionary.get_word(int(i))) for i in best]
        return [(sim, w) for sim, w in result if w != word][:k]

    def word_vectors(self, fin, fout):
        """Write ``token vector`` for every whitespace-delimited token read from the text stream `fin`."""
        for line in fin:
            for word in line.split():
                fout.write('%s %s\n' % (word, _format_vector(self.get_vector(word))))

    def sentence_vectors(self, fin, fout):
        """Write one sentence vector for every line read from the text stream `fin`."""
        for line in fin:
            fout.write('%s\n' % _format_vector(self.get_sentence_vector(line.split())))

    #
    # Text formats
    #
    def save_vectors(self, fname=None):
        """Store the vectors of all vocabulary words in the text `.vec` format.

        Parameters
        ----------
        fname : str, optional
            Output path. Defaults to `args.output` plus `.vec`.

        Returns
        -------
        str
            The output path.

        """
        self._require_model()
        if fname is None:
            fname = self.args.output + '.vec'
        nwords = self.dictionary.nwords
        logger.info("storing %sx%s word vectors into %s", nwords, self.args.dim, fname)
        with utils.open(fname, 'wb') as fout:
            fout.write(utils.to_utf8("%s %s\n" % (nwords, self.args.dim)))
            for i in range(nwords):
                word = self.dictionary.get_word(i)
                fout.write(utils.to_utf8("%s %s\n" % (word, _format_vector(self.get_vector(word)))))
        return fname

    def save_output(self, fname=None):
        """Store the output layer in the text `.vec` format, one row per label (supervised) or word.

        Rows are zero when the model was loaded without its output layer. Not supported for quantized
        models: a warning is logged and nothing is written.

        Parameters
        ----------
        fname : str, optional
            Output path. Defaults to `args.output` plus `.output`.

        Returns
        -------
        {str, None}
            The output path, or None if nothing was written.

        """
        self._require_model()
        if self.quant:
            logger.warning("saving the output matrix is not supported for quantized models")
            return None
        if fname is None:
            fname = self.args.output + '.output'
        if self.args.supervised:
            n, get_key = self.dictionary.nlabels, self.dictionary.get_label
        else:
            n, get_key = self.dictionary.nwords, self.dictionary.get_word
        if self.output is None:
            logger.warning("model was loaded without its output layer; storing zero vectors")
        logger.info("storing %sx%s output vectors into %s", n, self.args.dim, fname)
        with utils.open(fname, 'wb') as fout:
            fout.write(utils.to_utf8("%s %s\n" % (n, self.args.dim)))
            for i in range(n):
                vec = np.zeros(self.args.dim, dtype=REAL)
                if self.output is not None:
                    self.output.add_to_vector(vec, i)
                fout.write(utils.to_utf8("%s %s\n" % (get_key(i), _format_vector(vec))))
        return fname

    def load_vectors(self, fname, encoding='utf8', unicode_errors='strict'):
        """Initialize the input matrix from pretrained vectors in the text `.vec` format.

        Every word of the file is added to the dictionary, the dictionary is thresholded, and a new
        input matrix of ``nwords + bucket`` uniformly initialized rows is allocated. Rows of words that
        survive thresholding are then overwritten with the pretrained vectors.

        Parameters
        ----------
        fname : str
            Path to the vectors file.
        encoding : str, optional
            Encoding of the file.
        unicode_errors : str, optional
            Error handling when decoding lines, see :meth:`bytes.decode`.

        Raises
        ------
        :class:`~fastvec.models._fasttext_bin.FastTextFormatError`
            If the dimensionality of the file does not match `args.dim`, or the file is malformed.

        """
        logger.info("loading pretrained vectors from %s", fname)
        with utils.open(fname, 'rb') as fin:
            header = utils.to_unicode(fin.readline(), encoding=encoding)
            try:
                n, dim = (int(x) for x in header.split())
            except ValueError:
                raise FastTextFormatError('invalid header %r in %s, expected "<count> <dim>"' % (header, fname))
            if dim != self.args.dim:
                raise FastTextFormatError(
                    'dimension of pretrained vectors in %s (%i) does not match the model dimension (%i)' % (
                        fname, dim, self.args.dim,
                    )
                )
            words = []
            mat = np.zeros((n, dim), dtype=REAL)
            for line_no in range(n):
                line = fin.readline()
                if line == b'':
                    raise FastTextFormatError(
                        "unexpected end of input in %s; is count incorrect or file otherwise damaged?" % fname
                    )
                parts = utils.to_unicode(line.rstrip(), encoding=encoding, errors=unicode_errors).split(" ")
                if len(parts) != dim + 1:
                    raise FastTextFormatError('invalid vector on line %i of %s' % (line_no + 2, fname))
                try:
                    mat[line_no] = [REAL(x) for x in parts[1:]]
                except ValueError:
                    raise FastTextFormatError('invalid number on line %i of %s' % (line_no + 2, fname))
                words.append(parts[0])

        for word in words:
            self.dictionary.add(word)
        self.dictionary.threshold(1, 0)
        self.input = DenseMatrix(self.dictionary.nwords + self.args.bucket, dim)
        self.input.uniform(1.0 / dim, seed=self.args.seed)

        merged = 0
        for i, word in enumerate(words):
            idx = self.dictionary.get_id(word)
            if idx < 0 or idx >= self.dictionary.nwords:
                continue
            self.input.vectors[idx] = mat[i]
            merged += 1
        self._init_model()
        logger.info("merged %i of %i pretrained vectors from %s", merged, n, fname)

    #
    # Compression
    #
    def _select_embeddings(self, cutoff):
        """Rows of the `cutoff` input vectors with the largest norm, end-of-sentence first."""
        norms = self.input.l2_norm_rows()
        order = np.argsort(-norms, kind='stable')
        eosid = self.dictionary.get_id(EOS)
        if eosid >= 0:
            order = np.concatenate([[eosid], order[order != eosid]])
        return [int(i) for i in order[:cutoff]]

    def quantize(self, dsub=2, qnorm=False, cutoff=0, seed=1234):
        """Replace the dense input matrix by a product-quantized one.

        Parameters
        ----------
        dsub : int, optional
            Size of the sub-vectors coded together.
        qnorm : bool, optional
            Quantize the norms of the rows separately.
        cutoff : int, optional
            If positive and smaller than the number of rows, keep only that many rows with the largest
            norms, pruning the dictionary to match.
        seed : int, optional
            Seed for k-means.

        """
        self._require_model()
        if self.quant:
            raise ValueError('the model is already quantized')
        matrix = self.input
        if 0 < cutoff < len(matrix):
            idx = self.dictionary.prune(self._select_embeddings(cutoff))
            matrix = matrix.rows(idx)
            logger.info("pruned input matrix to %i rows", len(matrix))
        self.input = QuantizedMatrix(matrix, dsub=dsub, qnorm=qnorm, seed=seed)
        self._init_model()


def load_model(path, encoding='utf-8', full_model=True):
    """Load a model from Facebook's native fastText `.bin` or `.ftz` file.

    This function uses the smart_open library to open the path.
    The path may be on a remote host (e.g. HTTP, S3, etc).
    It may also be gzip or bz2 compressed (i.e. end in `.bin.gz` or `.bin.bz2`).

    Parameters
    ----------
    path : str
        The location of the model file.
    encoding : str, optional
        Specifies the file encoding.
    full_model : bool, optional
        If False, skip the output layer.

    Returns
    -------
    :class:`FastText`
        The loaded model.

    """
    return FastText().load_model(path, encoding=encoding, full_model=full_model)
