from .assembler import ContextAssembler, build_memory_context, compress_recent_chat, compute_kpi_deltas
from .bundle import ContextBundle, KpiDeltas
from .onboarding import OnboardingState, resolve_onboarding

__all__ = [
    "ContextAssembler",
    "ContextBundle",
    "KpiDeltas",
    "OnboardingState",
    "build_memory_context",
    "compress_recent_chat",
    "compute_kpi_deltas",
    "resolve_onboarding",
]
