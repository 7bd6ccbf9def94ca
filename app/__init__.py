"""
Storage Federation API

One storage contract over many heterogeneous backends, with a folder
namespace mirrored across all of them and a per-backend quota ledger.
"""

__version__ = "1.0.0"
