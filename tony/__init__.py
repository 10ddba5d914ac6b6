"""tony: declarative chat/agent task runner on top of an OpenAI-compatible backend."""

__version__ = "0.1.0"
