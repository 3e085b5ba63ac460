"""Source tree filtering and staging."""

from .filter import (
    ExclusionRule,
    compile_rule,
    default_excludes,
    filter_source,
    is_excluded,
    parse_rules,
    stage_source,
    tree_hash,
)

__all__ = [
    "ExclusionRule",
    "compile_rule",
    "default_excludes",
    "filter_source",
    "is_excluded",
    "parse_rules",
    "stage_source",
    "tree_hash",
]
