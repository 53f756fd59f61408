"""
PhotoGlobe indexer backend.
"""
