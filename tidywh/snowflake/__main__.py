#!/usr/bin/env python3
"""
Make snowflake package executable as a module.

This allows running: python -m tidywh.snowflake [command] [args...]
"""

import logging
import sys

from .cli import main

# Setup logging
handler = logging.StreamHandler(sys.stdout)
logging.basicConfig(
    format='%(asctime)s - %(levelname)s - %(message)s',
    level=logging.INFO,
    handlers=[handler],
    force=True
)

if __name__ == '__main__':
    main()
