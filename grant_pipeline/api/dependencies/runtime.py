"""
Process-wide runtime objects built once in the application lifespan.
"""

from ...models.manager import ModelManager
from ...pipeline.executor import StageExecutor


def get_model_manager() -> ModelManager:
    """FastAPI dependency to get the model manager from app state."""
    from ..main import app_state
    return app_state["model_manager"]


def get_executor() -> StageExecutor:
    from ..main import app_state
    return app_state["executor"]
