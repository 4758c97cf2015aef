"""
storeaudit CLI.
"""
