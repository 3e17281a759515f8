"""EditPilot: LLM edit orchestration for line-addressed document editing."""

__version__ = "0.1.0"

__all__ = ["__version__"]
