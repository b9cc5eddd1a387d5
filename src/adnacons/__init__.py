"""adnacons: damage-aware consensus and variant calling for ancient DNA.

Public API is intentionally small; most users should use the CLI:

    adnacons call --bam ... --ref ... --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
