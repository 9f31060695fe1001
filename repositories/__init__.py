"""
repositories/ - Data Access Layer
==================================
SQL repositories return domain model objects; obligation_store wraps
them in the async, timeout-bounded interface the services depend on.
"""
