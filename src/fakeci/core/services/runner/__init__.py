from .core import PipelineRunner

__all__ = ["PipelineRunner"]
