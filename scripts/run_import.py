"""
Script to run the importer from a source checkout
"""

import sys
import os

# Add current directory to path to allow imports from core, ingestion, etc.
sys.path.append(os.getcwd())

from cli import main


if __name__ == "__main__":
    sys.exit(main())
