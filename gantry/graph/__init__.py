"""
Gantry Graph - Declarations and the dependency graph built from them.
"""

from gantry.graph.builder import GraphBuilder
from gantry.graph.declarations import (
    Reference,
    ResourceDeclaration,
    Variable,
    VariableReference,
    logical_id,
    parse_reference,
)
from gantry.graph.loader import DeclarationSet, load_declarations, parse_document
from gantry.graph.models import ResourceGraph, ResourceNode, topological_sort

__all__ = [
    "DeclarationSet",
    "GraphBuilder",
    "Reference",
    "ResourceDeclaration",
    "ResourceGraph",
    "ResourceNode",
    "Variable",
    "VariableReference",
    "load_declarations",
    "logical_id",
    "parse_document",
    "parse_reference",
    "topological_sort",
]
