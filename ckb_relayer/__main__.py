"""
Entry point for running the relayer as a module.

Usage:
    python -m ckb_relayer
"""

from ckb_relayer.cli import main

if __name__ == "__main__":
    main()
