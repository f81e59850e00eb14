"""Allow ``python -m docmine``."""

from docmine.cli.click_app import main

if __name__ == "__main__":
    main()
