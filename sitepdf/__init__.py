"""Crawl a website and render its pages into one merged PDF."""

__version__ = "0.1.0"
