"""
Fee audit core: chain data types, the fee policy, block auditing, range
crawling and checkpoint storage.
"""

__all__ = []
