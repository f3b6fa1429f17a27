"""Stack ingestion: load, validate and normalize resource declarations."""

from .models import ResourceSpec, Lifecycle, RemovalPolicy, OutputSpec, StackDocument
from .stack_loader import load_stack, load_stack_data
from .stack_validator import parse_stack, validate_stack_structure

__all__ = [
    "ResourceSpec",
    "Lifecycle",
    "RemovalPolicy",
    "OutputSpec",
    "StackDocument",
    "load_stack",
    "load_stack_data",
    "parse_stack",
    "validate_stack_structure",
]
