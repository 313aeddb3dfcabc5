"""Execution pipeline for the chat runtime.

This package contains the streaming components:

- **engine**: Engine protocol (``AgentEngine``) and ``EngineError``
- **runtime**: pydantic-ai adapters (engine + title generator)
- **prompt**: System / title prompt rendering (Jinja2 templates)
- **frames**: Client-facing SSE frame shapes
- **heartbeat**: Keep-alive timer
- **presenter**: Engine stream -> client frames
- **coordinator**: Chat orchestration (prepare -> title -> stream)
"""
