"""
tipqa Python Service
Tip-gated question answering over a fixed documentation corpus, powered by RAG
"""

__version__ = "0.1.0"
