"""
Matching & settlement engine.
Links free-text predictions to real fixtures and settles them once the
fixture has finished.
"""
