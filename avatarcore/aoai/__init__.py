from .client import create_async_openai_client

__all__ = ["create_async_openai_client"]
