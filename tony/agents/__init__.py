"""Task execution: agent loop, chat path, task runner."""
