"""Product catalog service.

Versioned catalog items behind a read-through cache, with change
events delivered through a transactional outbox.
"""

__version__ = "0.1.0"
