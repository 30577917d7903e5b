"""
Inbound operations.
"""
