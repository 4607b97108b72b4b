"""
Identity-provider inline hook endpoints.

Keep import side-effect free.
"""
