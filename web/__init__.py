"""
Web layer for the comparable search engine.
"""
