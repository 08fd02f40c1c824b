"""Configuration settings for stepgraph."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet


def _csv(value: str) -> FrozenSet[str]:
    return frozenset(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    """stepgraph configuration settings."""

    # Length budgets for condensed text
    max_cond_len: int = int(os.getenv("STEPGRAPH_MAX_COND_LEN", "40"))
    max_arg_len: int = int(os.getenv("STEPGRAPH_MAX_ARG_LEN", "20"))

    # Source discovery
    go_exts: FrozenSet[str] = field(
        default_factory=lambda: _csv(os.getenv("STEPGRAPH_GO_EXTS", ".go"))
    )
    exclude_dirs: FrozenSet[str] = field(
        default_factory=lambda: _csv(
            os.getenv("STEPGRAPH_EXCLUDE_DIRS", ".git,vendor,node_modules,testdata,third_party")
        )
    )


SETTINGS = Settings()
