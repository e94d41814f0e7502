import logging
import os
from enum import Enum

logger = logging.getLogger(__name__)

MANAGER_DIR = os.path.join("cmd", "manager")
MAIN_FILE = os.path.join(MANAGER_DIR, "main.go")
WATCHES_FILE = "watches.yaml"


class OperatorKind(Enum):
    """How the operator project is run locally."""

    NATIVE_BINARY = "go"
    DECLARATIVE_RUNTIME = "watches"
    UNKNOWN = "unknown"


def classify(project_dir: str = ".") -> OperatorKind:
    """
    Classify the operator project rooted at project_dir.

    A Go operator is identified by its manager entry point, a
    watches-driven operator by its watch configuration file.
    """
    if os.path.isfile(os.path.join(project_dir, MAIN_FILE)):
        kind = OperatorKind.NATIVE_BINARY
    elif os.path.isfile(os.path.join(project_dir, WATCHES_FILE)):
        kind = OperatorKind.DECLARATIVE_RUNTIME
    else:
        kind = OperatorKind.UNKNOWN

    logger.debug(f"Project {os.path.abspath(project_dir)} classified as {kind.value}")
    return kind
