#!/usr/bin/env python3
"""
Setup script for the Volume Backtest Engine.

This setup.py is maintained for backwards compatibility.
The main project configuration is in pyproject.toml.
"""

from setuptools import setup

if __name__ == "__main__":
    setup()
