"""Load stack documents from YAML or JSON files."""

import json
from pathlib import Path
from typing import Any, Dict
import yaml
from .models import StackDocument
from .stack_validator import parse_stack
from ..utils.errors import StackLoadError
from ..utils.logging import get_logger

logger = get_logger("ingest.stack_loader")


def load_stack_data(stack_path: str) -> Dict[str, Any]:
    """
    Read a stack file without interpreting it.

    JSON is used for ``.json`` files, YAML for everything else.

    Raises:
        StackLoadError: If the file cannot be read or parsed
    """
    path = Path(stack_path)

    if not path.exists():
        raise StackLoadError(
            f"Stack file not found: {stack_path}. "
            "Please check the file path and ensure the file exists."
        )

    if not path.is_file():
        raise StackLoadError(f"Path is not a file: {stack_path}.")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except json.JSONDecodeError as e:
        raise StackLoadError(f"Invalid JSON in stack file: {e}")
    except yaml.YAMLError as e:
        raise StackLoadError(f"Invalid YAML in stack file: {e}")
    except OSError as e:
        raise StackLoadError(f"Error reading stack file: {e}")

    if data is None:
        logger.warning(f"Stack file {stack_path} is empty")
        data = {"resources": []}

    return data


def load_stack(stack_path: str) -> StackDocument:
    """
    Load, validate and parse a stack file.

    Args:
        stack_path: Path to a YAML or JSON stack document

    Returns:
        Parsed StackDocument

    Raises:
        StackLoadError: If the file cannot be read
        ResourceValidationError: If a declaration is malformed
    """
    data = load_stack_data(stack_path)
    stack = parse_stack(data)
    logger.info(f"Loaded stack from {stack_path} ({len(stack.resources)} resources, {len(stack.outputs)} outputs)")
    return stack
