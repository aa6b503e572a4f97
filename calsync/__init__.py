"""
calsync - durable calendar synchronization queue
"""

__version__ = "1.0.0"
