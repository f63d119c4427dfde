"""
Runnable walkthrough of the ctxauth engine.
"""
