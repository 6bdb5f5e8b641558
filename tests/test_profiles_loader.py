from pathlib import Path
import textwrap

import pytest

from autodidact.profiles import DEFAULT_PROFILE, ProfileLoadError, ProfileLoader


def write_profile(path: Path, *, profile_id: str = "opus", title: str) -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: {profile_id}
            title: {title}
            model: anthropic.claude-opus-4
            input_cost_per_1k: 0.015
            output_cost_per_1k: 0.075
            avg_tokens: 12000
            avg_seconds: 180
            """
        ).strip().format(profile_id=profile_id, title=title),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_profile(base / "opus.yaml", title="Base Title")
    write_profile(override / "opus.yml", title="Override Title")

    profiles = ProfileLoader([base, override]).load_all()

    assert profiles["opus"].title == "Override Title"
    assert profiles["opus"].avg_tokens == 12000


def test_builtin_profile_is_always_available(tmp_path: Path) -> None:
    loader = ProfileLoader([tmp_path, tmp_path / "missing"])

    assert loader.load_all() == {"sonnet": DEFAULT_PROFILE}
    assert loader.search_paths == [tmp_path]
    assert loader.get("sonnet").model == "anthropic.claude-sonnet-4"


def test_yaml_can_override_builtin_profile(tmp_path: Path) -> None:
    write_profile(tmp_path / "sonnet.yaml", profile_id="sonnet", title="Tuned Sonnet")

    assert ProfileLoader([tmp_path]).get("sonnet").title == "Tuned Sonnet"


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("id: \nmodel: test", encoding="utf-8")

    with pytest.raises(ProfileLoadError):
        ProfileLoader([tmp_path]).load_all()


def test_negative_costs_are_rejected(tmp_path: Path) -> None:
    (tmp_path / "bad.yaml").write_text(
        "id: bad\ntitle: Bad\nmodel: m\ninput_cost_per_1k: -1\noutput_cost_per_1k: 0\n"
        "avg_tokens: 10\navg_seconds: 1\n",
        encoding="utf-8",
    )

    with pytest.raises(ProfileLoadError):
        ProfileLoader([tmp_path]).load_all()


def test_unknown_profile_raises(tmp_path: Path) -> None:
    with pytest.raises(ProfileLoadError):
        ProfileLoader([tmp_path]).get("missing")


def test_pricing_table_with_profile_list(tmp_path: Path) -> None:
    (tmp_path / "table.yaml").write_text(
        textwrap.dedent(
            """
            profiles:
              - id: Haiku
                title: Claude Haiku
                model: anthropic.claude-haiku
                input_cost_per_1k: 0.0008
                output_cost_per_1k: 0.004
                avg_tokens: 4000
                avg_seconds: 45
              - id: opus
                title: Claude Opus
                model: anthropic.claude-opus-4
                input_cost_per_1k: 0.015
                output_cost_per_1k: 0.075
                avg_tokens: 12000
                avg_seconds: 180
            """
        ),
        encoding="utf-8",
    )
    loader = ProfileLoader([tmp_path])

    profiles = loader.load_all()

    assert set(profiles) == {"sonnet", "haiku", "opus"}
    assert loader.get("HAIKU").avg_seconds == 45
    assert loader.sources["opus"] == tmp_path / "table.yaml"
    assert loader.sources["sonnet"] is None


def test_profiles_key_must_hold_a_list(tmp_path: Path) -> None:
    (tmp_path / "table.yaml").write_text("profiles: sonnet\n", encoding="utf-8")

    with pytest.raises(ProfileLoadError):
        ProfileLoader([tmp_path]).load_all()


def test_single_file_search_path(tmp_path: Path) -> None:
    path = tmp_path / "opus.yaml"
    write_profile(path, title="Direct")

    assert ProfileLoader([path]).get("opus").title == "Direct"
