"""peribolos controller - Tekton TaskRun orchestration for GitHub App events."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("peribolos-controller")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source without pip install)
    __version__ = "0.0.0.dev0"

# Re-export core public API
from peribolos.app import main
from peribolos.dispatcher import EventDispatcher
from peribolos.pipeline import TaskRunPipeline

__all__ = [
    "__version__",
    "EventDispatcher",
    "TaskRunPipeline",
    "main",
]
