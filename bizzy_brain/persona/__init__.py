from .composer import PersonaComposition, build_persona_message, compose_persona
from .dials import PersonaDials, PersonaFlags, derive_dials
from .heuristics import StructureSignals, infer_structure

__all__ = [
    "PersonaComposition",
    "PersonaDials",
    "PersonaFlags",
    "StructureSignals",
    "build_persona_message",
    "compose_persona",
    "derive_dials",
    "infer_structure",
]
