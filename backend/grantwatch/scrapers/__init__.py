"""Scraper package: import all scrapers to trigger @register_scraper decorators."""

from grantwatch.scrapers.static_html import StaticHtmlScraper  # noqa: F401
