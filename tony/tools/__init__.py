"""Tool resolution and dispatch: local handlers, remote providers, sub-task invocation."""
