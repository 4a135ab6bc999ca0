"""
Cloud Import - shared library for the provider import scripts.
"""
