#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""
Automated tests for the binary codec and the model header.
"""

import io
import logging
import struct
import unittest

import numpy as np
from testfixtures import log_capture

from fastvec.models import _fasttext_bin
from fastvec.models._fasttext_bin import FASTTEXT_FILEFORMAT_MAGIC, FASTTEXT_VERSION, FastTextFormatError
from fastvec.models.args import Args, LOSS_HS, MODEL_SUP


class TestSignature(unittest.TestCase):
    def test_sign_and_check(self):
        buf = io.BytesIO()
        _fasttext_bin.sign_model(buf)
        self.assertEqual(buf.getvalue(), struct.pack('@2i', 793712314, 12))
        buf.seek(0)
        self.assertEqual(_fasttext_bin.check_model(buf), 12)

    def test_older_version(self):
        buf = io.BytesIO(struct.pack('@2i', FASTTEXT_FILEFORMAT_MAGIC, 11))
        self.assertEqual(_fasttext_bin.check_model(buf), 11)

    def test_bad_magic(self):
        with self.assertRaises(FastTextFormatError) as ctx:
            _fasttext_bin.check_model(io.BytesIO(struct.pack('@2i', 1, 12)))
        self.assertIn('magic', str(ctx.exception))

    def test_new_version(self):
        buf = io.BytesIO(struct.pack('@2i', FASTTEXT_FILEFORMAT_MAGIC, FASTTEXT_VERSION + 1))
        self.assertRaises(FastTextFormatError, _fasttext_bin.check_model, buf)

    def test_format_error_is_value_error(self):
        self.assertTrue(issubclass(FastTextFormatError, ValueError))


class TestPrimitives(unittest.TestCase):
    def test_word(self):
        buf = io.BytesIO()
        _fasttext_bin.write_word(buf, u'北海道')
        _fasttext_bin.write_word(buf, u'')
        self.assertEqual(buf.getvalue(), u'北海道'.encode('utf-8') + b'\x00\x00')
        buf.seek(0)
        self.assertEqual(_fasttext_bin.read_word(buf), u'北海道')
        self.assertEqual(_fasttext_bin.read_word(buf), u'')

    @log_capture()
    def test_invalid_utf8(self, loglines):
        word = _fasttext_bin.read_word(io.BytesIO(b'ab\xffc\x00'))
        self.assertEqual(word, u'ab\\xffc')
        self.assertIn('failed to decode', str(loglines))

    def test_unterminated_word(self):
        self.assertRaises(FastTextFormatError, _fasttext_bin.read_word, io.BytesIO(b'abc'))

    def test_floats(self):
        buf = io.BytesIO()
        _fasttext_bin.write_floats(buf, np.array([1.5, -2.0]))
        self.assertEqual(len(buf.getvalue()), 8)
        buf.seek(0)
        floats = _fasttext_bin.read_floats(buf, 2)
        self.assertEqual(floats.dtype, np.float32)
        np.testing.assert_array_equal(floats, [1.5, -2.0])
        floats[0] = 3  # writable copy
        self.assertRaises(FastTextFormatError, _fasttext_bin.read_floats, io.BytesIO(b'\x00' * 7), 2)

    def test_at_eof(self):
        buf = io.BytesIO(b'x')
        self.assertFalse(_fasttext_bin.at_eof(buf))
        self.assertEqual(buf.read(), b'x')
        self.assertTrue(_fasttext_bin.at_eof(buf))


class TestArgs(unittest.TestCase):
    def test_defaults(self):
        args = Args()
        self.assertEqual((args.dim, args.bucket, args.minn, args.maxn), (100, 2000000, 3, 6))
        self.assertEqual(args.label, '__label__')
        self.assertFalse(args.supervised)
        self.assertTrue(Args(model=MODEL_SUP).supervised)

    def test_unknown_field(self):
        self.assertRaises(TypeError, Args, dimension=10)

    def test_save_load(self):
        args = Args(dim=7, ws=3, epoch=9, min_count=2, neg=4, word_ngrams=2, loss=LOSS_HS, model=MODEL_SUP,
                    bucket=11, minn=2, maxn=5, lr_update_rate=50, t=0.25)
        buf = io.BytesIO()
        args.save(buf)
        self.assertEqual(len(buf.getvalue()), 12 * 4 + 8)
        self.assertEqual(buf.getvalue()[:8], struct.pack('@2i', 7, 3))
        buf.seek(0)
        self.assertEqual(Args.load(buf), args)

    def test_copy(self):
        args = Args(dim=3)
        other = args.copy()
        other.dim = 4
        self.assertEqual(args.dim, 3)
        self.assertNotEqual(args, other)


if __name__ == '__main__':
    logging.basicConfig(format='%(asctime)s : %(levelname)s : %(message)s', level=logging.DEBUG)
    unittest.main()
