from .base import BaseAdapter
from .echo import EchoAdapter
from .openai import OpenAIAdapter

__all__ = [
    "BaseAdapter",
    "EchoAdapter",
    "OpenAIAdapter",
]
