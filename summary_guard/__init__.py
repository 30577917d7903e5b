"""
Summary Guard.

Serves cached AI summaries of document collections under tiered usage quotas.
"""

__version__ = "0.1.0"
