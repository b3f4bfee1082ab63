"""Symbol verification and link directive emission."""

from .linker import ArtifactLinker, LinkDirective, LinkKind, LinkPlan, write_link_file

__all__ = ["ArtifactLinker", "LinkDirective", "LinkKind", "LinkPlan", "write_link_file"]
