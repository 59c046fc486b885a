"""Policy sources, registry and build driver."""

from sqla_rls.policy._base import BuildResult, CompiledPolicy, PolicyFailure, PolicySource
from sqla_rls.policy._build import combine_policies, compile_policies
from sqla_rls.policy._registry import PolicyRegistry, get_default_registry

__all__ = [
    "BuildResult",
    "CompiledPolicy",
    "PolicyFailure",
    "PolicyRegistry",
    "PolicySource",
    "combine_policies",
    "compile_policies",
    "get_default_registry",
]
