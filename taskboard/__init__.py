"""TaskBoard API: task and board CRUD over HTTP backed by DynamoDB.

The request handler runs as an API Gateway proxy Lambda; the same handler is
served locally by ``taskboard serve``.
"""

__all__ = ["__version__"]

__version__ = "1.0.0"
