"""novelfetch: table-of-contents crawling and chapter extraction for web novels."""

__version__ = "0.1.0"
