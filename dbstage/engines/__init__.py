"""
Engines: SQL stage engine and the Stage builder.
"""

from dbstage.engines.sql import run_stage
from dbstage.engines.stage import Stage, act, transact

__all__ = [
    "Stage",
    "act",
    "transact",
    "run_stage",
]
