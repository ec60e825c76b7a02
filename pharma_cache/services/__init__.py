"""
Services built on top of the cache store: consumers, the refresh
scheduler, optimistic mutations, persistence and the application-wide
container that wires them together.
"""
