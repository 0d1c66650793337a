"""
Knowledge search retrieval service.
Semantic retrieval over curated quotes, images and knowledge items.
"""

__version__ = "1.0.0"
