"""
Command line interface - python -m src.cli
"""
