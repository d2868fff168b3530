"""
Shop Metrics Aggregation & Insight Engine
"""

__version__ = "1.0.0"
