"""
Tests for the SQL Server <-> CSV transfer plugin modules.

This package contains tests for the codec, the export/import engines and the CLI.
"""

import os
import sys

# Add plugins directory to Python path so tests run without installing the package
plugins_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..', 'plugins'))
if plugins_dir not in sys.path:
    sys.path.insert(0, plugins_dir)
