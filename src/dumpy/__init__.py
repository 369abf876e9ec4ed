"""
Dumpy connection server.

Pooled connections to MySQL, PostgreSQL, MongoDB, SQL Server and Oracle
behind one asynchronous interface.
"""

__version__ = "0.1.0"
