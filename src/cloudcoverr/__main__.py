"""
Allow running cloudcoverr as a module: python -m cloudcoverr
"""

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
