"""
dynpatch Module Entry Point
============================

Allows running the dynpatch CLI via: python -m dynpatch
"""

from dynpatch.cli import main

if __name__ == "__main__":
    main()
