import sys

from fastvec.scripts.fasttext_cli import main

sys.exit(main())
