"""
Knowledge layer: corpus loading, markdown chunking, and the in-memory vector index
"""
