"""
Persistence: schema, connection, repositories and secret encryption.
"""
