"""
Core functionality for gallery uploads: errors, dependencies and middleware
"""
