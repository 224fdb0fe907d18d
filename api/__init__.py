"""StudyAI backend: LLM chat, vision and summarization proxy."""

__version__ = "0.1.0"
