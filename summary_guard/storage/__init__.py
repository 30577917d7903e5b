"""
Persistence for the ledger, the artifact cache and the document store.
"""
