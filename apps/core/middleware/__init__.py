"""
Core middleware.
"""
