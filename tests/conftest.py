# Copyright 2024-2026 Hewlett Packard Enterprise Development LP
# SPDX-License-Identifier: Apache-2.0
"""
Pytest fixtures and configuration for transferbench-env tests.
"""
import sys
from pathlib import Path

import pytest

# Add parent directory to path so the module imports without installation
ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

import transferbench_env


@pytest.fixture
def tbe():
    """Provide the transferbench_env module for testing."""
    return transferbench_env


@pytest.fixture
def parser():
    """Provide a fresh argument parser for testing."""
    return transferbench_env.build_parser()


@pytest.fixture
def default_snapshot():
    """Snapshot loaded from an empty environment."""
    return transferbench_env.load_config({})
