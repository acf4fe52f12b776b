"""Virtual pet reaction pipeline and trait evolution engine."""

from pet_evolution.config import Settings, load_settings  # noqa: F401
from pet_evolution.evolution import EvolutionService  # noqa: F401
from pet_evolution.gateway import GeneratorGateway  # noqa: F401
from pet_evolution.pipeline.orchestrator import ReactionPipeline  # noqa: F401
from pet_evolution.storage import InMemoryRepository, JsonRepository  # noqa: F401
from pet_evolution.traits import TraitEngine  # noqa: F401
