"""Result synthesis: strategies, manifest and the synthesizer.

This module provides:
- ResultSynthesizer for validating a finished run and producing the artifact
- SynthesisStrategy protocol plus Concatenation, MajorityVote, WeightedMerge,
  Callable and ReflectionLoop strategies
- Manifest / ManifestEntry describing every subtask's outcome
"""

from __future__ import annotations

from wavefront.synthesis.manifest import Manifest, ManifestEntry
from wavefront.synthesis.strategies import (
    CallableStrategy,
    ConcatenationStrategy,
    Critique,
    MajorityVoteStrategy,
    ReflectionLoop,
    SynthesisStrategy,
    SynthesisView,
    WeightedMergeStrategy,
)
from wavefront.synthesis.synthesizer import ResultSynthesizer, SynthesisResult

__all__ = [
    "CallableStrategy",
    "ConcatenationStrategy",
    "Critique",
    "MajorityVoteStrategy",
    "Manifest",
    "ManifestEntry",
    "ReflectionLoop",
    "ResultSynthesizer",
    "SynthesisResult",
    "SynthesisStrategy",
    "SynthesisView",
    "WeightedMergeStrategy",
]
