"""
scripts package - SpicySpaceman Filter List Builder

Modules:
    header: Filter header parsing, version extraction and checksums
    store: Source and published filter storage
    builder: Versioned, checksummed filter builds
    linter: Source rule linting
    fetcher: Download published filters with ETag/Last-Modified caching
    pipeline: Main processing pipeline
"""

__version__ = "1.0.0"
