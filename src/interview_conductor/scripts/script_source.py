"""
Interview script sources.

A script holds the background question and coding prompt for one
company/role pair. It is fetched once when a session starts.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from interview_conductor.errors import ConfigurationMissingError
from interview_conductor.orchestrator.schemas import InterviewScript

logger = logging.getLogger(__name__)


class ScriptSource(ABC):
    """Abstract base class for interview script sources."""

    @abstractmethod
    async def get_script(self, company_id: str, role_id: str) -> InterviewScript:
        """
        Fetch the script for a company and role.

        Raises:
            ConfigurationMissingError: If no complete script exists.
        """
        ...


def _build_script(company_id: str, role_id: str, data: dict[str, Any]) -> InterviewScript:
    try:
        return InterviewScript.model_validate({"company_id": company_id, "role_id": role_id, **data})
    except ValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors(include_url=False)]
        raise ConfigurationMissingError(
            f"Interview script for {company_id}/{role_id} is incomplete",
            details={"fields": missing},
        ) from e


class StaticScriptSource(ScriptSource):
    """Script source backed by an in-memory mapping."""

    def __init__(self, scripts: dict[tuple[str, str], dict[str, Any]] | None = None) -> None:
        """
        Initialize the source.

        Args:
            scripts: Script fields keyed by (company_id, role_id).
        """
        self._scripts = dict(scripts or {})

    def add(self, script: InterviewScript) -> None:
        """Register a script."""
        self._scripts[(script.company_id, script.role_id)] = script.model_dump(
            exclude={"company_id", "role_id"}
        )

    async def get_script(self, company_id: str, role_id: str) -> InterviewScript:
        """Fetch the script for a company and role."""
        if not company_id or not role_id:
            raise ConfigurationMissingError("Company and role are required to start an interview")
        data = self._scripts.get((company_id, role_id))
        if data is None:
            raise ConfigurationMissingError(f"No interview script for {company_id}/{role_id}")
        return _build_script(company_id, role_id, data)


class JsonScriptSource(ScriptSource):
    """
    Script source backed by a JSON file.

    Layout: ``{"<company_id>": {"company_name": ..., "roles": {"<role_id>":
    {"background_question": ..., "coding_prompt": ...}}}}``.
    """

    def __init__(self, path: str | Path) -> None:
        """
        Initialize the source.

        Args:
            path: Location of the scripts file.
        """
        self._path = Path(path)
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            if not self._path.exists():
                raise ConfigurationMissingError(f"Scripts file not found: {self._path}")
            try:
                self._data = json.loads(self._path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise ConfigurationMissingError(f"Scripts file is not valid JSON: {self._path}") from e
            logger.info(f"Loaded interview scripts from {self._path}")
        return self._data

    async def get_script(self, company_id: str, role_id: str) -> InterviewScript:
        """Fetch the script for a company and role."""
        if not company_id or not role_id:
            raise ConfigurationMissingError("Company and role are required to start an interview")

        company = self._load().get(company_id)
        if not isinstance(company, dict):
            raise ConfigurationMissingError(f"Unknown company: {company_id}")
        role = company.get("roles", {}).get(role_id)
        if not isinstance(role, dict):
            raise ConfigurationMissingError(f"Unknown role for {company_id}: {role_id}")

        data = {"company_name": company.get("company_name"), **role}
        return _build_script(company_id, role_id, data)
