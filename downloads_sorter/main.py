# downloads_sorter/main.py

from downloads_sorter.cli.main import sorter


def main():
    """Entry point for `python -m downloads_sorter.main` and the `downloads-sorter` script."""
    sorter()


if __name__ == '__main__':
    main()
