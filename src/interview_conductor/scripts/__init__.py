"""
Scripts module providing per company/role interview content.
"""

from interview_conductor.scripts.script_source import (
    JsonScriptSource,
    ScriptSource,
    StaticScriptSource,
)

__all__ = ["JsonScriptSource", "ScriptSource", "StaticScriptSource"]
