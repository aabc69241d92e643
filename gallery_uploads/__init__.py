"""
Gallery uploads: resumable direct-to-S3 uploads with background promotion
"""

__version__ = "1.0.0"
