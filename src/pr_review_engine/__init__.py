# src/pr_review_engine/__init__.py
"""Diff-to-inline-comment review pipeline for pull requests."""

__version__ = "0.2.0"
