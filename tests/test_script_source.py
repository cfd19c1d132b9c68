import json
from pathlib import Path

import pytest

from interview_conductor.errors import ConfigurationMissingError
from interview_conductor.scripts.script_source import JsonScriptSource, StaticScriptSource

SCRIPTS = {
    "acme": {
        "company_name": "Acme Corp",
        "roles": {
            "frontend-engineer": {
                "background_question": "Tell me about a UI you rebuilt.",
                "coding_prompt": "Build a searchable list.",
            },
            "backend-engineer": {
                "background_question": "Tell me about a migration.",
            },
        },
    }
}


@pytest.fixture
def scripts_file(tmp_path: Path) -> Path:
    path = tmp_path / "scripts.json"
    path.write_text(json.dumps(SCRIPTS), encoding="utf-8")
    return path


@pytest.mark.asyncio
async def test_json_source_builds_script(scripts_file: Path) -> None:
    source = JsonScriptSource(scripts_file)

    script = await source.get_script("acme", "frontend-engineer")

    assert script.company_name == "Acme Corp"
    assert script.display_role == "frontend engineer"
    assert script.coding_prompt == "Build a searchable list."


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("company_id", "role_id"),
    [("globex", "frontend-engineer"), ("acme", "designer"), ("", "frontend-engineer"), ("acme", "")],
)
async def test_json_source_unknown_ids(scripts_file: Path, company_id: str, role_id: str) -> None:
    with pytest.raises(ConfigurationMissingError):
        await JsonScriptSource(scripts_file).get_script(company_id, role_id)


@pytest.mark.asyncio
async def test_json_source_incomplete_script(scripts_file: Path) -> None:
    with pytest.raises(ConfigurationMissingError) as excinfo:
        await JsonScriptSource(scripts_file).get_script("acme", "backend-engineer")
    assert "coding_prompt" in excinfo.value.details["fields"]


@pytest.mark.asyncio
async def test_json_source_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationMissingError):
        await JsonScriptSource(tmp_path / "absent.json").get_script("acme", "frontend-engineer")


@pytest.mark.asyncio
async def test_bundled_scripts_are_complete() -> None:
    path = Path(__file__).resolve().parents[1] / "data" / "interview_scripts.json"
    source = JsonScriptSource(path)

    for role_id in ("frontend-engineer", "backend-engineer"):
        script = await source.get_script("acme", role_id)
        assert script.background_question
        assert script.coding_prompt


@pytest.mark.asyncio
async def test_static_source(script) -> None:
    source = StaticScriptSource()
    source.add(script)

    fetched = await source.get_script("acme", "frontend-engineer")
    assert fetched == script

    with pytest.raises(ConfigurationMissingError):
        await source.get_script("acme", "backend-engineer")
