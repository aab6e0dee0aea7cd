"""
drmscan Module Entry Point
===========================

Allows running the drmscan CLI via: python -m drmscan
"""

from drmscan.cli import main

if __name__ == "__main__":
    main()
