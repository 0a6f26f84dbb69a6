"""Command-line entry for a download-and-merge run; see :func:`poscraper.poscraper.main`."""

import logging

from poscraper.poscraper import main

logging.basicConfig(level=logging.INFO)


if __name__ == "__main__":
    main()
