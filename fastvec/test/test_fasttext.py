#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""
Automated tests for loading, querying and saving fastText models.
"""

import io
import logging
import os
import struct
import unittest
from multiprocessing.pool import ThreadPool

import numpy as np
from testfixtures import log_capture

from fastvec.models.args import Args, LOSS_HS, MODEL_SUP
from fastvec.models.dictionary import Dictionary
from fastvec.models.fasttext import FastText, load_model
from fastvec.models.matrix import DenseMatrix
from fastvec.models._fasttext_bin import FASTTEXT_FILEFORMAT_MAGIC, FastTextFormatError
from fastvec.test.utils import build_model, datapath, temporary_file

logger = logging.getLogger(__name__)

supervised_counts = [
    ('</s>', 4),
    ('good', 3),
    ('movie', 2),
    ('bad', 1),
    ('__label__positive', 3),
    ('__label__negative', 1),
]


def roundtrip(model, **kwargs):
    buf = io.BytesIO()
    model.save_model(buf)
    buf.seek(0)
    return FastText().load_model(buf, **kwargs)


def read_vec_file(path):
    with open(path, encoding='utf8') as fin:
        header = fin.readline().split()
        rows = [line.rstrip('\n').split(' ') for line in fin]
    return [int(x) for x in header], {row[0]: np.array([float(x) for x in row[1:]]) for row in rows}


class TestSerialization(unittest.TestCase):
    def test_roundtrip_dense(self):
        model = build_model()
        with temporary_file('model.bin') as path:
            model.save_model(path)
            loaded = load_model(path)

        self.assertEqual(loaded.args, model.args)
        self.assertEqual(loaded.version, 12)
        self.assertFalse(loaded.quant)
        self.assertEqual(loaded.get_words(), model.get_words())
        self.assertEqual(loaded.dictionary.ntokens, model.dictionary.ntokens)
        self.assertEqual(loaded.input, model.input)
        self.assertEqual(loaded.output, model.output)
        for word in ['human', 'humans', 'graph']:
            np.testing.assert_array_equal(loaded.get_vector(word), model.get_vector(word))

    def test_roundtrip_is_byte_exact(self):
        model = build_model()
        first = io.BytesIO()
        model.save_model(first)
        second = io.BytesIO()
        roundtrip(model).save_model(second)
        self.assertEqual(first.getvalue(), second.getvalue())

    def test_roundtrip_quantized(self):
        model = build_model(bucket=300)
        model.quantize(dsub=2, qnorm=True)
        self.assertTrue(model.quant)
        with temporary_file('model') as prefix:
            model.args.output = prefix
            path = model.save_model()
            self.assertEqual(path, prefix + '.ftz')
            loaded = load_model(path)

        self.assertTrue(loaded.quant)
        self.assertTrue(loaded.model.quant)
        np.testing.assert_array_equal(loaded.input.codes, model.input.codes)
        np.testing.assert_array_equal(loaded.input.norm_codes, model.input.norm_codes)
        for word in ['human', 'humans', 'graph']:
            np.testing.assert_array_equal(loaded.get_vector(word), model.get_vector(word))

    def test_quantize_with_cutoff(self):
        model = build_model(bucket=400)
        model.quantize(dsub=2, cutoff=300)

        self.assertEqual(model.input.shape, (300, 4))
        self.assertTrue(model.dictionary.is_pruned())
        self.assertIn('</s>', model)
        self.assertEqual(model.dictionary.nwords + model.dictionary.pruneidx_size, 300)

        loaded = roundtrip(model)
        self.assertEqual(loaded.dictionary.pruneidx, model.dictionary.pruneidx)
        self.assertEqual(loaded.get_words(), model.get_words())
        for word in model.get_words() + ['humans']:
            np.testing.assert_array_equal(loaded.get_vector(word), model.get_vector(word))

    def test_quantize_twice(self):
        model = build_model(bucket=300)
        model.quantize()
        self.assertRaises(ValueError, model.quantize)

    def test_default_binary_path(self):
        model = build_model()
        with temporary_file('model') as prefix:
            model.args.output = prefix
            self.assertEqual(model.save_model(), prefix + '.bin')
            self.assertTrue(os.path.exists(prefix + '.bin'))

    def test_without_output_matrix(self):
        model = build_model()
        self.assertIsNone(roundtrip(model, full_model=False).output)

        model.output = None
        loaded = roundtrip(model)
        self.assertIsNone(loaded.output)
        np.testing.assert_array_equal(loaded.get_vector('human'), model.get_vector('human'))

    def test_bad_magic(self):
        stream = io.BytesIO(struct.pack('@2i', 12345, 12) + b'\x00' * 100)
        self.assertRaises(FastTextFormatError, FastText().load_model, stream)

    def test_newer_version(self):
        stream = io.BytesIO(struct.pack('@2i', FASTTEXT_FILEFORMAT_MAGIC, 13) + b'\x00' * 100)
        with self.assertRaises(FastTextFormatError) as ctx:
            FastText().load_model(stream)
        self.assertIn('13', str(ctx.exception))

    def test_truncated(self):
        buf = io.BytesIO()
        build_model().save_model(buf)
        data = buf.getvalue()
        for size in (2, 20, len(data) // 2):
            self.assertRaises(FastTextFormatError, FastText().load_model, io.BytesIO(data[:size]))

    def test_missing_file(self):
        with temporary_file('missing.bin') as path:
            self.assertRaises(OSError, load_model, path)

    def test_pruned_dense(self):
        model = build_model()
        model.dictionary.prune([0, 1, 2])
        buf = io.BytesIO()
        model.save_model(buf)
        buf.seek(0)
        with self.assertRaises(FastTextFormatError) as ctx:
            FastText().load_model(buf)
        self.assertIn('pruned', str(ctx.exception))

    def test_supervised_version_11(self):
        model = build_model(counts=supervised_counts, model=MODEL_SUP)
        self.assertEqual(model.dictionary.nlabels, 2)
        self.assertEqual(model.output.shape, (2, 4))
        buf = io.BytesIO()
        model.save_model(buf)
        data = bytearray(buf.getvalue())

        self.assertEqual(roundtrip(model).args.maxn, 4)

        data[4:8] = struct.pack('@i', 11)
        loaded = FastText().load_model(io.BytesIO(bytes(data)))
        self.assertEqual(loaded.version, 11)
        self.assertEqual(loaded.args.maxn, 0)
        self.assertEqual(loaded.dictionary.get_subwords('good'), [loaded.dictionary.get_id('good')])

    def test_unsupervised_version_11(self):
        model = build_model()
        buf = io.BytesIO()
        model.save_model(buf)
        data = bytearray(buf.getvalue())
        data[4:8] = struct.pack('@i', 11)
        self.assertEqual(FastText().load_model(io.BytesIO(bytes(data))).args.maxn, 4)

    def test_dimension_mismatch(self):
        args = Args(dim=5, bucket=0, loss=LOSS_HS)
        dictionary = Dictionary(args)
        dictionary.add('a')
        self.assertRaises(FastTextFormatError, FastText, args, dictionary, DenseMatrix(1, 4))

    def test_too_few_rows(self):
        model = build_model()
        self.assertRaises(
            FastTextFormatError, FastText, model.args, model.dictionary, DenseMatrix(vectors=model.input.vectors[:5]),
        )


class TestQueries(unittest.TestCase):
    def setUp(self):
        self.model = build_model()

    def test_vocabulary(self):
        self.assertEqual(self.model.get_dimension(), 4)
        self.assertIs(self.model.get_dictionary(), self.model.dictionary)
        self.assertEqual(
            self.model.get_words(), ['</s>', 'human', 'interface', 'computer', 'survey', 'system', 'graph'],
        )
        self.assertIn('human', self.model)
        self.assertNotIn('humans', self.model)

    def test_vector_is_average_of_subwords(self):
        for word in ['human', 'humans']:
            ids = self.model.dictionary.get_subwords(word)
            self.assertTrue(ids)
            expected = self.model.input.vectors[ids].mean(axis=0)
            np.testing.assert_allclose(self.model.get_vector(word), expected, rtol=1e-5, atol=1e-6)
            np.testing.assert_array_equal(self.model[word], self.model.get_vector(word))

    def test_vector_is_fresh(self):
        vec = self.model.get_vector('human')
        vec[:] = 0
        self.assertTrue(self.model.get_vector('human').any())

    def test_vector_without_subwords(self):
        model = build_model(maxn=0)
        vec = model.get_vector('unknown')
        self.assertEqual(vec.dtype, np.float32)
        np.testing.assert_array_equal(vec, np.zeros(4))
        np.testing.assert_array_equal(model.get_vector('human'), model.input.vectors[1])

    def test_subwords(self):
        substrings, ids = self.model.get_subwords('human')
        self.assertEqual(substrings[:3], ['human', '<hu', '<hum'])
        self.assertEqual(ids, self.model.dictionary.get_subwords('human'))

    def test_no_input_matrix(self):
        self.assertRaises(ValueError, FastText().get_vector, 'human')

    def test_precompute_word_vectors(self):
        model = build_model(maxn=0)
        model.input.vectors[2] = 0
        out = model.precompute_word_vectors()
        self.assertEqual(out.shape, (7, 4))
        for i, word in enumerate(model.get_words()):
            vec = model.get_vector(word)
            if i == 2:
                np.testing.assert_array_equal(out[i], np.zeros(4))
            else:
                self.assertAlmostEqual(float(np.linalg.norm(out[i])), 1.0, places=5)
                np.testing.assert_allclose(out[i], vec / np.linalg.norm(vec), rtol=1e-5, atol=1e-6)
        self.assertFalse(np.isnan(out.vectors).any())

    def test_precompute_into_buffer(self):
        out = DenseMatrix(7, 4)
        out.vectors[:] = 5
        self.assertIs(self.model.precompute_word_vectors(out), out)
        self.assertLess(np.abs(out.vectors).max(), 1.0 + 1e-6)
        self.assertRaises(ValueError, self.model.precompute_word_vectors, DenseMatrix(7, 3))

    def test_get_nn(self):
        neighbours = self.model.get_nn('human', k=3)
        self.assertEqual(len(neighbours), 3)
        self.assertNotIn('human', [word for _, word in neighbours])
        scores = [score for score, _ in neighbours]
        self.assertEqual(scores, sorted(scores, reverse=True))

        unit = self.model.precompute_word_vectors().vectors
        query = self.model.get_vector('human')
        query = query / np.linalg.norm(query)
        expected = sorted(
            ((float(unit[i].dot(query)), w) for i, w in enumerate(self.model.get_words()) if w != 'human'),
            reverse=True,
        )[:3]
        self.assertEqual([w for _, w in neighbours], [w for _, w in expected])
        np.testing.assert_allclose(scores, [s for s, _ in expected], rtol=1e-5, atol=1e-6)

    def test_get_nn_concurrent(self):
        expected = self.model.get_nn('human', k=3)
        self.model._word_vectors = None
        with ThreadPool(4) as pool:
            results = pool.map(lambda _: self.model.get_nn('human', k=3), range(8))
        self.assertEqual(results, [expected] * 8)
        self.assertIsNotNone(self.model._word_vectors)

    def test_get_nn_oov(self):
        self.assertEqual(len(self.model.get_nn('humans', k=20)), 7)
        model = build_model(maxn=0)
        self.assertRaises(KeyError, model.get_nn, 'unknown')

    def test_sentence_vector(self):
        words = ['human', 'computer']
        expected = sum(v / np.linalg.norm(v) for v in (self.model.get_vector(w) for w in words)) / 2
        np.testing.assert_allclose(self.model.get_sentence_vector(words), expected, rtol=1e-5, atol=1e-6)
        np.testing.assert_array_equal(self.model.get_sentence_vector([]), np.zeros(4))

    def test_word_vectors(self):
        fin = io.StringIO(u'human  graph\n\nhumans\n')
        fout = io.StringIO()
        self.model.word_vectors(fin, fout)
        lines = fout.getvalue().splitlines()
        self.assertEqual([line.split(' ')[0] for line in lines], ['human', 'graph', 'humans'])
        for line in lines:
            parts = line.split(' ')
            self.assertEqual(len(parts), 5)
            np.testing.assert_allclose(
                [float(x) for x in parts[1:]], self.model.get_vector(parts[0]), rtol=1e-4, atol=1e-5,
            )

    def test_sentence_vectors(self):
        fout = io.StringIO()
        self.model.sentence_vectors(io.StringIO(u'human computer\nsurvey\n'), fout)
        self.assertEqual(len(fout.getvalue().splitlines()), 2)


class TestTextFormats(unittest.TestCase):
    def test_save_vectors(self):
        model = build_model()
        with temporary_file('vectors') as prefix:
            model.args.output = prefix
            path = model.save_vectors()
            self.assertEqual(path, prefix + '.vec')
            header, vectors = read_vec_file(path)
        self.assertEqual(header, [7, 4])
        self.assertEqual(sorted(vectors), sorted(model.get_words()))
        for word, vec in vectors.items():
            np.testing.assert_allclose(vec, model.get_vector(word), rtol=1e-4, atol=1e-5)

    def test_save_output(self):
        model = build_model()
        with temporary_file('model.output') as path:
            self.assertEqual(model.save_output(path), path)
            header, vectors = read_vec_file(path)
        self.assertEqual(header, [7, 4])
        for i, word in enumerate(model.get_words()):
            np.testing.assert_allclose(vectors[word], model.output[i], rtol=1e-4, atol=1e-5)

    def test_save_output_supervised(self):
        model = build_model(counts=supervised_counts, model=MODEL_SUP)
        with temporary_file('model.output') as path:
            model.save_output(path)
            header, vectors = read_vec_file(path)
        self.assertEqual(header, [2, 4])
        self.assertEqual(sorted(vectors), ['__label__negative', '__label__positive'])
        np.testing.assert_allclose(vectors['__label__positive'], model.output[0], rtol=1e-4, atol=1e-5)

    @log_capture()
    def test_save_output_without_output_matrix(self, loglines):
        model = build_model()
        model.output = None
        with temporary_file('model.output') as path:
            model.save_output(path)
            header, vectors = read_vec_file(path)
        self.assertEqual(header, [7, 4])
        for vec in vectors.values():
            np.testing.assert_array_equal(vec, np.zeros(4))
        self.assertIn("without its output layer", str(loglines))

    @log_capture()
    def test_save_output_quantized(self, loglines):
        model = build_model(bucket=300)
        model.quantize()
        with temporary_file('model.output') as path:
            self.assertIsNone(model.save_output(path))
            self.assertFalse(os.path.exists(path))
        self.assertIn("not supported for quantized models", str(loglines))

    def test_load_vectors(self):
        model = FastText(Args(dim=3, maxn=0, bucket=10, loss=LOSS_HS))
        model.load_vectors(datapath('pretrained.vec'))

        self.assertEqual(model.get_words(), ['hello', 'world'])
        self.assertEqual(model.input.shape, (12, 3))
        self.assertFalse(model.quant)
        np.testing.assert_array_equal(model.get_vector('hello'), np.array([0.1, 0.2, 0.3], dtype=np.float32))
        np.testing.assert_array_equal(model.get_vector('world'), np.array([-1, 0.5, 2], dtype=np.float32))
        # ngram rows are randomly initialized
        self.assertTrue(np.all(np.abs(model.input.vectors[2:]) <= 1.0 / 3))

    def test_load_vectors_with_ngrams(self):
        model = FastText(Args(dim=3, minn=3, maxn=3, bucket=10, loss=LOSS_HS))
        model.load_vectors(datapath('pretrained.vec'))
        ids = model.dictionary.get_subwords('hello')
        self.assertEqual(len(ids), 6)
        np.testing.assert_array_equal(model.input[0], np.array([0.1, 0.2, 0.3], dtype=np.float32))

    def test_load_vectors_dimension_mismatch(self):
        model = FastText(Args(dim=3, maxn=0, bucket=10, loss=LOSS_HS))
        with self.assertRaises(FastTextFormatError) as ctx:
            model.load_vectors(datapath('pretrained-dim4.vec'))
        self.assertIn('dimension', str(ctx.exception))
        self.assertIsNone(model.input)
        self.assertEqual(len(model.dictionary), 0)

    def test_save_load_vectors(self):
        model = build_model(maxn=0, bucket=0)
        with temporary_file('model.vec') as path:
            model.save_vectors(path)
            other = FastText(Args(dim=4, maxn=0, bucket=0, loss=LOSS_HS))
            other.load_vectors(path)
        self.assertEqual(other.get_words(), model.get_words())
        for word in model.get_words():
            np.testing.assert_allclose(other.get_vector(word), model.get_vector(word), rtol=1e-4, atol=1e-5)

    def test_load_vectors_malformed(self):
        model = FastText(Args(dim=3, maxn=0, bucket=10, loss=LOSS_HS))
        with temporary_file('bad.vec') as path:
            with open(path, 'w') as fout:
                fout.write('2 3\nhello 0.1 0.2\n')
            self.assertRaises(FastTextFormatError, model.load_vectors, path)
            with open(path, 'w') as fout:
                fout.write('3 3\nhello 0.1 0.2 0.3\n')
            self.assertRaises(FastTextFormatError, model.load_vectors, path)
            with open(path, 'w') as fout:
                fout.write('two three\n')
            self.assertRaises(FastTextFormatError, model.load_vectors, path)

    def test_load_vectors_failure_keeps_model(self):
        model = build_model()
        nwords, input_matrix = model.dictionary.nwords, model.input
        expected = model.get_vector('humans')
        with temporary_file('truncated.vec') as path:
            with open(path, 'w') as fout:
                fout.write('3 4\nhello 0.1 0.2 0.3 0.4\n')
            self.assertRaises(FastTextFormatError, model.load_vectors, path)

        self.assertEqual(model.dictionary.nwords, nwords)
        self.assertNotIn('hello', model)
        self.assertIs(model.input, input_matrix)
        np.testing.assert_array_equal(model.get_vector('humans'), expected)

    def test_load_vectors_skips_labels(self):
        model = FastText(Args(dim=3, maxn=0, bucket=10, loss=LOSS_HS))
        model.load_vectors(datapath('pretrained-label.vec'))

        self.assertEqual(model.get_words(), ['hello', 'world'])
        self.assertEqual(model.dictionary.nlabels, 1)
        self.assertEqual(model.input.shape, (12, 3))
        np.testing.assert_array_equal(model.get_vector('hello'), np.array([0.1, 0.2, 0.3], dtype=np.float32))
        np.testing.assert_array_equal(model.get_vector('world'), np.array([-1, 0.5, 2], dtype=np.float32))
        # the label row has no place in the input matrix
        self.assertFalse(np.any(model.input.vectors == 9))


if __name__ == '__main__':
    logging.basicConfig(format='%(asctime)s : %(levelname)s : %(message)s', level=logging.DEBUG)
    unittest.main()
