"""
Strata Core
===========

Data models, exception taxonomy and the decode engine.
"""
