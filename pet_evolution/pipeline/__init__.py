"""Three-layer reaction pipeline.

  perception — reads the situation against the pet's state
  core       — personality and behavior tendency, rewritten by perception
  execution  — concrete behavior and bounded stat changes, rewritten by core

`ReactionPipeline` (orchestrator) runs the three stages in order and merges
the result into the pet.
"""

from .core import run_core  # noqa: F401
from .execution import run_execution  # noqa: F401
from .orchestrator import (  # noqa: F401
    PipelineState,
    ReactionPipeline,
    RunTrace,
    fallback_reaction,
)
from .perception import run_perception  # noqa: F401
