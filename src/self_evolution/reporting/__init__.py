"""Reporting package — markdown evolution reports."""

from self_evolution.reporting.markdown import MarkdownReporter

__all__ = ["MarkdownReporter"]
