# main.py

# Convenience launcher so the sorter can be run from a source checkout with
# `python main.py watch`. The installed `downloads-sorter` script and
# `python -m downloads_sorter.main` reach the same command group.
from downloads_sorter.main import main

if __name__ == '__main__':
    main()
