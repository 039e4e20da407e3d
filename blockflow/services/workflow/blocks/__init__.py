"""Block contract, registry and built-in blocks."""

from blockflow.services.workflow.blocks.base import BlockExecutor, BlockMetadata
from blockflow.services.workflow.blocks.branch import BranchBlock
from blockflow.services.workflow.blocks.filter import FilterBlock
from blockflow.services.workflow.blocks.input import StaticInputBlock
from blockflow.services.workflow.blocks.output import LoggerOutputBlock
from blockflow.services.workflow.blocks.registry import BlockRegistry, get_registry
from blockflow.services.workflow.blocks.transform import (
    FieldMappingBlock,
    PassThroughBlock,
)

__all__ = [
    "BlockExecutor",
    "BlockMetadata",
    "BlockRegistry",
    "BranchBlock",
    "FieldMappingBlock",
    "FilterBlock",
    "LoggerOutputBlock",
    "PassThroughBlock",
    "StaticInputBlock",
    "get_registry",
]
