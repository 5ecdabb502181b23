"""
Tests for the diagnose CLI.

Tests cover:
- validate-config exit codes and JSON output
- simulate / overlap / complexity JSON output
- Catalog sections and YAML input
- Receipt JSONL appending
"""

import json

import pytest
import yaml
from click.testing import CliRunner

from diagnose import catalog_from_document, cli


CATALOG = {
    "emotions": {
        "joy": {"weights": {"valence": 1.0, "arousal": 0.5}, "gates": ["valence >= 0.2"]},
        "gladness": {"weights": {"valence": 1.0, "arousal": 0.5}, "gates": ["valence >= 0.2"]},
        "fear": {"weights": {"threat": 1.0, "valence": -0.4}, "gates": ["threat >= 0.5"]},
    },
    "sexualStates": {
        "aroused": {"weights": {"sex_excitation": 1.0}},
    },
}

EXPRESSION = {
    "id": "joy_spike",
    "prerequisites": [{"logic": {">=": [{"var": "emotions.joy"}, 0.3]}}],
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def files(tmp_path):
    catalog = tmp_path / "catalog.json"
    catalog.write_text(json.dumps(CATALOG))
    expression = tmp_path / "joy_spike.json"
    expression.write_text(json.dumps(EXPRESSION))
    overlap_config = tmp_path / "overlap.json"
    overlap_config.write_text(json.dumps({"sampleCountPerPair": 200, "prescanSampleCount": 50}))
    return {"catalog": str(catalog), "expression": str(expression),
            "overlap_config": str(overlap_config), "dir": tmp_path}


class TestCatalogLoading:
    """catalog_from_document."""

    def test_sections(self):
        """Section entries get their section's prototype type."""
        catalog = catalog_from_document(CATALOG)
        types = {p.id: p.type for p in catalog}
        assert types["joy"] == "emotion"
        assert types["aroused"] == "sexual"

    def test_flat_mapping(self):
        """A flat {id: definition} mapping is a catalog of emotions."""
        catalog = catalog_from_document({"joy": {"weights": {"valence": 1.0}}})
        assert [p.id for p in catalog] == ["joy"]


class TestValidateConfig:
    """validate-config."""

    def test_valid(self, runner, files):
        """A valid config exits 0."""
        result = runner.invoke(cli, ["validate-config", files["overlap_config"], "-o", "json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["kind"] == "overlap"

    def test_invalid(self, runner, files):
        """An invalid config exits 1 and lists errors."""
        path = files["dir"] / "bad.json"
        path.write_text(json.dumps({"sampleCountPerPair": -5}))
        result = runner.invoke(cli, ["validate-config", str(path), "-o", "json"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["valid"] is False
        assert data["errors"]

    def test_yaml_section(self, runner, files):
        """YAML files with a kind section validate that section."""
        path = files["dir"] / "config.yaml"
        path.write_text(yaml.safe_dump({"simulation": {"sampleCount": 100, "samplingMode": "dynamic"}}))
        result = runner.invoke(cli, ["validate-config", str(path), "-k", "simulation", "-o", "json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["valid"] is True


class TestSimulate:
    """simulate."""

    def test_json_output(self, runner, files):
        """JSON output carries the rate and the expression, not stored contexts."""
        result = runner.invoke(cli, [
            "simulate", files["expression"], "-p", files["catalog"],
            "--samples", "200", "--seed", "5", "-o", "json",
        ])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["sampleCount"] == 200
        assert 0.0 < data["triggerRate"] < 1.0
        assert data["expression"]["id"] == "joy_spike"
        assert "storedContexts" not in data

    def test_sensitivity(self, runner, files):
        """--sensitivity adds a grid per simple condition."""
        result = runner.invoke(cli, [
            "simulate", files["expression"], "-p", files["catalog"],
            "--samples", "200", "--seed", "5", "--sensitivity", "-o", "json",
        ])
        assert result.exit_code == 0, result.output
        grids = json.loads(result.stdout)["sensitivity"]
        assert grids[0]["conditionPath"] == "emotions.joy"

    def test_rich_interval_label(self, runner, files):
        """The interval label follows the configured confidence level."""
        config = files["dir"] / "sim.json"
        config.write_text(json.dumps({"confidenceLevel": 0.9}))
        result = runner.invoke(cli, [
            "simulate", files["expression"], "-p", files["catalog"], "-c", str(config),
            "--samples", "100", "--seed", "5",
        ])
        assert result.exit_code == 0, result.output
        assert "90% CI" in result.output
        assert "95% CI" not in result.output

    def test_malformed_expression(self, runner, files):
        """A malformed expression exits 1."""
        path = files["dir"] / "broken.json"
        path.write_text(json.dumps({"prerequisites": []}))
        result = runner.invoke(cli, ["simulate", str(path), "-p", files["catalog"], "-o", "json"])
        assert result.exit_code == 1
        assert "error" in json.loads(result.stdout)

    def test_receipts_appended(self, runner, files):
        """--receipts appends one JSON line per run."""
        receipts = files["dir"] / "receipts.jsonl"
        for _ in range(2):
            runner.invoke(cli, [
                "simulate", files["expression"], "-p", files["catalog"],
                "--samples", "50", "--seed", "1", "--receipts", str(receipts), "-o", "json",
            ])
        lines = receipts.read_text().strip().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["receipt_type"] == "monte_carlo_simulation"


class TestOverlap:
    """overlap."""

    def test_json_output(self, runner, files):
        """Duplicate emotions are recommended for merging."""
        result = runner.invoke(cli, [
            "overlap", files["catalog"], "-c", files["overlap_config"], "--seed", "3", "-o", "json",
        ])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["metadata"]["total_prototypes"] == 3
        recommendation = data["recommendations"][0]
        assert recommendation["type"] == "merge_recommended"
        assert recommendation["classification"]["type"] == "merge_recommended"

    def test_sexual_family(self, runner, files):
        """The sexual family alone has too few prototypes."""
        result = runner.invoke(cli, ["overlap", files["catalog"], "-f", "sexual", "-o", "json"])
        assert result.exit_code == 0, result.output
        status = json.loads(result.stdout)["metadata"]["summary_insight"]["status"]
        assert status == "insufficient_data"


class TestComplexity:
    """complexity."""

    def test_json_output(self, runner, files):
        """Small catalogs report per-prototype complexity only."""
        result = runner.invoke(cli, ["complexity", files["catalog"], "-o", "json"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["totalPrototypes"] == 4
        assert data["prototypeComplexities"]["joy"] == 2

    def test_rich_output(self, runner, files):
        """Rich output renders without error."""
        result = runner.invoke(cli, ["complexity", files["catalog"]])
        assert result.exit_code == 0, result.output
