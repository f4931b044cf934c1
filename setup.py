#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# Licensed under the GNU LGPL v2.1 - https://www.gnu.org/licenses/old-licenses/lgpl-2.1.en.html

"""
Run with::

    python ./setup.py install
"""

from setuptools import find_packages, setup


# packages included for build-testing everywhere
core_testenv = [
    'pytest',
    'pytest-cov',
    'testfixtures',
]

install_requires = [
    'numpy >= 1.18.5',
    'scipy >= 1.7.0',
    'smart_open >= 1.8.1',
]

setup(
    name='fastvec',
    version='0.3.0.dev0',
    description='Load, query and quantize fastText word-embedding models',
    long_description=__doc__,
    packages=find_packages(include=['fastvec', 'fastvec.*']),

    license='LGPL-2.1-only',

    keywords='fastText, word embeddings, subword vectors, product quantization, word2vec',

    platforms='any',

    zip_safe=False,

    classifiers=[  # from https://pypi.org/classifiers/
        'Development Status :: 3 - Alpha',
        'Environment :: Console',
        'Intended Audience :: Science/Research',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3 :: Only',
        'Topic :: Scientific/Engineering :: Artificial Intelligence',
        'Topic :: Text Processing :: Linguistic',
    ],

    python_requires='>=3.8',
    install_requires=install_requires,
    extras_require={
        'test': core_testenv,
    },
    entry_points={
        'console_scripts': ['fastvec = fastvec.scripts.fasttext_cli:main'],
    },

    package_data={'fastvec.test': ['test_data/*']},
)
