#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Authors: Fastvec Contributors
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""
USAGE: python -m fastvec <command> <args>

Query a fastText model saved in Facebook's binary format. Queries are read from standard input,
results are written to standard output and progress is logged to standard error.

Commands:

* print-word-vectors <model>: print the vector of every whitespace-delimited word on stdin;
* print-sentence-vectors <model>: print one sentence vector for every line on stdin;
* print-ngrams <model> <word>: print every subword of `word` with its vector;
* nn <model> [k]: print the `k` nearest neighbours of every word on stdin.

Example:

.. sourcecode:: bash

    $ echo "king queen" | python -m fastvec print-word-vectors model.bin

"""

import argparse
import logging
import os
import sys

from fastvec.models.fasttext import _format_vector, load_model

logger = logging.getLogger(__name__)


def print_word_vectors(model_path, fin=None, fout=None):
    fin = fin or sys.stdin
    fout = fout or sys.stdout
    model = load_model(model_path)
    model.word_vectors(fin, fout)


def print_sentence_vectors(model_path, fin=None, fout=None):
    fin = fin or sys.stdin
    fout = fout or sys.stdout
    model = load_model(model_path)
    model.sentence_vectors(fin, fout)


def print_ngrams(model_path, word, fout=None):
    fout = fout or sys.stdout
    model = load_model(model_path)
    substrings, ids = model.get_subwords(word)
    for substring, i in zip(substrings, ids):
        vec = model.input[i]
        fout.write('%s %s\n' % (substring, _format_vector(vec)))


def nn(model_path, k=10, fin=None, fout=None):
    fin = fin or sys.stdin
    fout = fout or sys.stdout
    model = load_model(model_path)
    for line in fin:
        for word in line.split():
            try:
                neighbours = model.get_nn(word, k)
            except KeyError as err:
                logger.warning("%s", err.args[0])
                continue
            for score, neighbour in neighbours:
                fout.write('%s %.5g\n' % (neighbour, score))


def build_parser():
    parser = argparse.ArgumentParser(
        prog='fastvec', formatter_class=argparse.RawDescriptionHelpFormatter, description=__doc__,
    )
    subparsers = parser.add_subparsers(dest='command', metavar='command')

    cmd = subparsers.add_parser('print-word-vectors', help="print vectors of words read from stdin")
    cmd.add_argument('model', help="path to a .bin or .ftz model")

    cmd = subparsers.add_parser('print-sentence-vectors', help="print vectors of lines read from stdin")
    cmd.add_argument('model', help="path to a .bin or .ftz model")

    cmd = subparsers.add_parser('print-ngrams', help="print the subwords of a word and their vectors")
    cmd.add_argument('model', help="path to a .bin or .ftz model")
    cmd.add_argument('word', help="the word to split into subwords")

    cmd = subparsers.add_parser('nn', help="print nearest neighbours of words read from stdin")
    cmd.add_argument('model', help="path to a .bin or .ftz model")
    cmd.add_argument('k', nargs='?', type=int, default=10, help="number of neighbours (default: %(default)s)")
    return parser


def main(argv=None):
    """Run the command line interface, returning the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_usage(sys.stderr)
        return 1

    logging.basicConfig(format='%(asctime)s : %(levelname)s : %(message)s', level=logging.INFO)
    logger.info("running %s %s", os.path.basename(sys.argv[0]), args.command)
    try:
        if args.command == 'print-word-vectors':
            print_word_vectors(args.model)
        elif args.command == 'print-sentence-vectors':
            print_sentence_vectors(args.model)
        elif args.command == 'print-ngrams':
            print_ngrams(args.model, args.word)
        elif args.command == 'nn':
            nn(args.model, args.k)
    except (OSError, ValueError) as err:
        sys.stderr.write('%s: error: %s\n' % (parser.prog, err))
        return 1
    logger.info("finished running %s", args.command)
    return 0


if __name__ == '__main__':
    sys.exit(main())
