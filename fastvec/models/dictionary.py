#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Authors: Fastvec Contributors
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""Vocabulary of a fastText model and the subword (character ngram) hashing used to look up vectors.

Word ids occupy rows ``[0, nwords)`` of the input matrix. Every character ngram of a word is
hashed with the 32-bit FNV-1a function into one of ``bucket`` slots, stored after the words, so
the row of an ngram is ``nwords + hash % bucket``. The vector of a word is the average of the rows
returned by :meth:`Dictionary.get_subwords`, which also works for words the model never saw.

The hashing must match the training-time hashing byte for byte, otherwise vectors of known and
unknown words are silently wrong.

"""

import logging

from fastvec.models._fasttext_bin import (
    read_word, struct_pack, struct_unpack, write_word,
)

logger = logging.getLogger(__name__)

EOS = '</s>'
BOW = '<'
EOW = '>'

ENTRY_WORD = 0
ENTRY_LABEL = 1

#
# UTF-8 bytes that begin with 10 are subsequent bytes of a multi-byte sequence,
# as opposed to a new character.
#
_MB_MASK = 0xC0
_MB_START = 0x80


def _is_utf8_continue(b):
    return b & _MB_MASK == _MB_START


def ft_hash_bytes(bytez):
    """Calculate hash based on `bytez`.

    Reproduces the `hash method from Facebook fastText implementation
    <https://github.com/facebookresearch/fastText/blob/master/src/dictionary.cc>`_,
    including its treatment of bytes as signed chars.

    Parameters
    ----------
    bytez : bytes
        The string whose hash needs to be calculated, encoded as UTF-8.

    Returns
    -------
    int
        The unsigned 32-bit hash.

    """
    h = 2166136261
    for b in bytez:
        if b >= 0x80:
            b |= 0xFFFFFF00  # sign-extend
        h = ((h ^ b) * 16777619) & 0xFFFFFFFF
    return h


def _ngram_spans(encoded, minn, maxn):
    """Yield ``(start, end)`` byte offsets of every ngram of `encoded`, in fastText order."""
    size = len(encoded)
    for i in range(size):
        if _is_utf8_continue(encoded[i]):
            continue
        j = i
        n = 1
        while j < size and n <= maxn:
            j += 1
            while j < size and _is_utf8_continue(encoded[j]):
                j += 1
            if n >= minn and not (n == 1 and (i == 0 or j == size)):
                yield i, j
            n += 1


def compute_ngrams_bytes(word, minn, maxn):
    """Compute ngrams for a word, the way Facebook's fastText does.

    The word is wrapped in ``<`` and ``>`` first. Lengths are counted in characters, not bytes.

    Parameters
    ----------
    word : str
        The word to compute ngrams for.
    minn : int
        Minimum ngram length, in characters.
    maxn : int
        Maximum ngram length, in characters.

    Returns
    -------
    list of bytes
        The UTF-8 encoded ngrams.

    """
    encoded = (BOW + word + EOW).encode('utf-8')
    return [encoded[i:j] for i, j in _ngram_spans(encoded, minn, maxn)]


def ft_ngram_hashes(word, minn, maxn, num_buckets):
    """Calculate the ngrams of the word and hash them.

    Returns
    -------
        A list of bucket numbers (integers), one per each detected ngram.

    """
    if num_buckets <= 0:
        return []
    return [ft_hash_bytes(n) % num_buckets for n in compute_ngrams_bytes(word, minn, maxn)]


class Entry(object):
    """A vocabulary item: the token, its corpus frequency, its type and its cached subword ids."""
    __slots__ = ('word', 'count', 'type', 'subwords')

    def __init__(self, word, count, type, subwords=None):
        self.word = word
        self.count = count
        self.type = type
        self.subwords = subwords if subwords is not None else []

    def __repr__(self):
        return 'Entry(word=%r, count=%r, type=%r)' % (self.word, self.count, self.type)


class Dictionary(object):
    """Mapping between tokens and their ids, plus the subword lookup.

    Parameters
    ----------
    args : :class:`~fastvec.models.args.Args`
        Supplies `bucket`, `minn`, `maxn` and the `label` prefix.

    Attributes
    ----------
    words : list of :class:`Entry`
        All entries, words first, then labels. The index in this list is the token id.
    size : int
        Number of entries.
    nwords : int
        Number of word entries.
    nlabels : int
        Number of label entries.
    ntokens : int
        Number of tokens the vocabulary was built from.
    pruneidx_size : int
        -1 for a dictionary that was never pruned, otherwise the number of kept ngram buckets.
    pruneidx : dict of (int, int)
        Maps an original ngram bucket to its row among the kept buckets.

    """
    def __init__(self, args):
        self.args = args
        self.words = []
        self.word2int = {}
        self.size = 0
        self.nwords = 0
        self.nlabels = 0
        self.ntokens = 0
        self.pruneidx_size = -1
        self.pruneidx = {}

    def __len__(self):
        return self.size

    def __contains__(self, word):
        return word in self.word2int

    def get_id(self, word):
        """Get the id of `word`, or -1 if it is not in the vocabulary."""
        return self.word2int.get(word, -1)

    def get_type(self, word_or_id):
        if isinstance(word_or_id, int):
            return self.words[word_or_id].type
        return ENTRY_LABEL if word_or_id.startswith(self.args.label) else ENTRY_WORD

    def get_word(self, i):
        return self.words[i].word

    def get_label(self, lid):
        if lid < 0 or lid >= self.nlabels:
            raise IndexError('label id %i is out of range [0, %i)' % (lid, self.nlabels))
        return self.words[lid + self.nwords].word

    def get_counts(self, entry_type):
        """Frequencies of all entries of `entry_type`, in id order."""
        return [entry.count for entry in self.words if entry.type == entry_type]

    def is_pruned(self):
        return self.pruneidx_size >= 0

    def add(self, word):
        """Count one occurrence of `word`, adding it to the vocabulary if it is new."""
        self.ntokens += 1
        i = self.word2int.get(word)
        if i is not None:
            self.words[i].count += 1
            return
        entry_type = self.get_type(word)
        self.word2int[word] = self.size
        self.words.append(Entry(word, 1, entry_type))
        self.size += 1
        if entry_type == ENTRY_WORD:
            self.nwords += 1
        else:
            self.nlabels += 1

    def _push_hash(self, hashes, bucket_id):
        if self.pruneidx_size == 0 or bucket_id < 0:
            return
        if self.pruneidx_size > 0:
            if bucket_id not in self.pruneidx:
                return
            bucket_id = self.pruneidx[bucket_id]
        hashes.append(self.nwords + bucket_id)

    def _ngrams(self, word):
        """Yield ``(ngram bytes, row id)`` for every ngram of `word` that has a row."""
        if self.args.bucket <= 0 or self.args.maxn <= 0:
            return
        for ngram in compute_ngrams_bytes(word, self.args.minn, self.args.maxn):
            hashes = []
            self._push_hash(hashes, ft_hash_bytes(ngram) % self.args.bucket)
            for row in hashes:
                yield ngram, row

    def compute_subwords(self, word):
        """Row ids of the ngrams of `word`, excluding any whole-word row."""
        return [row for _, row in self._ngrams(word)]

    def init_ngrams(self):
        """Recompute the cached subword ids of every entry."""
        for i, entry in enumerate(self.words):
            entry.subwords = [i]
            if entry.word != EOS:
                entry.subwords.extend(self.compute_subwords(entry.word))

    def get_subwords(self, word):
        """Get the input matrix rows that make up the vector of `word`.

        Known words map to their own row followed by their ngram rows; unknown words map to their
        ngram rows only, which may be an empty list.

        """
        i = self.get_id(word)
        if i >= 0:
            return list(self.words[i].subwords)
        if word == EOS:
            return []
        return self.compute_subwords(word)

    def get_subword_strings(self, word):
        """Like :meth:`get_subwords`, but also return a readable string for every row.

        Returns
        -------
        (list of str, list of int)
            Subword strings and the matching row ids.

        """
        substrings, ids = [], []
        i = self.get_id(word)
        if i >= 0:
            substrings.append(word)
            ids.append(i)
        if word != EOS:
            for ngram, row in self._ngrams(word):
                substrings.append(ngram.decode('utf-8'))
                ids.append(row)
        return substrings, ids

    def _reindex(self):
        self.word2int = {}
        self.size = self.nwords = self.nlabels = 0
        for entry in self.words:
            self.word2int[entry.word] = self.size
            self.size += 1
            if entry.type == ENTRY_WORD:
                self.nwords += 1
            else:
                self.nlabels += 1

    def threshold(self, t, tl):
        """Drop words seen fewer than `t` times and labels seen fewer than `tl` times.

        Remaining entries are reordered: words before labels, each by descending count.

        """
        self.words.sort(key=lambda e: (e.type, -e.count))
        self.words = [
            e for e in self.words
            if not ((e.type == ENTRY_WORD and e.count < t) or (e.type == ENTRY_LABEL and e.count < tl))
        ]
        self._reindex()
        self.init_ngrams()
        logger.info("thresholded vocabulary to %i words and %i labels", self.nwords, self.nlabels)

    def prune(self, idx):
        """Keep only the words and ngram buckets whose input rows are listed in `idx`.

        Labels are always kept.

        Parameters
        ----------
        idx : list of int
            Input matrix rows to keep: word ids below `nwords`, ngram rows above.

        Returns
        -------
        list of int
            The kept rows in their new order: sorted word rows, then ngram rows in the given order.
            Row ``k`` of the pruned input matrix must be row ``result[k]`` of the old one.

        """
        word_rows = sorted(i for i in idx if i < self.nwords)
        ngram_rows = [i for i in idx if i >= self.nwords]

        self.pruneidx = {}
        for j, ngram in enumerate(ngram_rows):
            self.pruneidx[ngram - self.nwords] = j
        self.pruneidx_size = len(self.pruneidx)

        keep = set(word_rows)
        self.words = [e for i, e in enumerate(self.words) if e.type == ENTRY_LABEL or i in keep]
        self._reindex()
        self.init_ngrams()
        return word_rows + ngram_rows

    @classmethod
    def load(cls, fin, args, encoding='utf-8'):
        """Read a dictionary from the binary stream `fin`.

        Parameters
        ----------
        fin : file
            An open binary stream, positioned at the dictionary block.
        args : :class:`~fastvec.models.args.Args`
            Parameters of the model the dictionary belongs to.
        encoding : str, optional
            The encoding to use when decoding binary data into words.

        """
        result = cls(args)
        size, nwords, nlabels = struct_unpack(fin, '@3i')
        ntokens, pruneidx_size = struct_unpack(fin, '@2q')
        logger.info("loading %s words for fastText model", size)

        for _ in range(size):
            word = read_word(fin, encoding=encoding)
            count, entry_type = struct_unpack(fin, '@qb')
            result.words.append(Entry(word, count, entry_type))

        for _ in range(max(pruneidx_size, 0)):
            first, second = struct_unpack(fin, '@2i')
            result.pruneidx[first] = second

        result._reindex()
        result.ntokens = ntokens
        result.pruneidx_size = pruneidx_size
        if (result.size, result.nwords, result.nlabels) != (size, nwords, nlabels):
            logger.warning(
                "dictionary header declares %i entries (%i words, %i labels), found %i (%i words, %i labels)",
                size, nwords, nlabels, result.size, result.nwords, result.nlabels,
            )
        result.init_ngrams()
        return result

    def save(self, fout, encoding='utf-8'):
        """Write the dictionary to the binary stream `fout`."""
        struct_pack(fout, '@3i', self.size, self.nwords, self.nlabels)
        struct_pack(fout, '@2q', self.ntokens, self.pruneidx_size)
        for entry in self.words:
            write_word(fout, entry.word, encoding=encoding)
            struct_pack(fout, '@qb', entry.count, entry.type)
        for first, second in self.pruneidx.items():
            struct_pack(fout, '@2i', first, second)
