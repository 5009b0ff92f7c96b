"""
Core modules for AI Chat Guard.

This package contains failure classification, the generation fallback
chain, the usage gate and conversation persistence.
"""
