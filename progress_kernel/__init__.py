"""
Progress Kernel

Stage tracking and status propagation for contracted services:
- Template stage definitions synchronized into per-contract stage instances
- Bottom-up completion percentages (stage -> contract service -> contract -> client)
- One-way status ratchet with routine mirroring
- Row-level serialization of stage writes per contract service
"""

__version__ = "0.1.0"
