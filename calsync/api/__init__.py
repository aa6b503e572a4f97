"""
calsync HTTP API
"""
