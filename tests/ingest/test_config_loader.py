"""Tests for environment configuration loading."""

import pytest
import yaml
from converge.ingest.config_loader import load_environment_file, parse_environment
from converge.ingest.models import VariableSpec
from converge.utils.errors import ConfigurationError


def _write(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestLoadEnvironmentFile:
    """Test loading the sandbox fixture."""

    def test_loads_modules_in_declaration_order(self, sandbox_spec):
        """Modules keep their declared order and names."""
        assert sandbox_spec.environment == "sandbox"
        assert [m.name for m in sandbox_spec.modules] == ["network", "cluster", "database"]

    def test_source_definition_is_merged(self, sandbox_spec):
        """Resources, variables and outputs come from module.yaml."""
        network = sandbox_spec.get_module("network")
        assert [r.name for r in network.resources] == ["vpc", "public_a", "public_b", "private_a", "private_b"]
        assert network.variables["cidr_block"].required
        assert not network.variables["environment_tag"].required
        assert network.outputs["private_subnet_ids"] == ["resource.private_a.id", "resource.private_b.id"]

    def test_disabled_module_source_is_not_read(self, sandbox_spec):
        """Disabled modules keep their declaration but no definition."""
        database = sandbox_spec.get_module("database")
        assert database.enabled is False
        assert database.resources == []

    def test_missing_file(self, tmp_path):
        """Missing file raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_environment_file(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        """Broken YAML raises ConfigurationError."""
        path = tmp_path / "env.yaml"
        path.write_text("modules: [", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_environment_file(path)


class TestParseEnvironment:
    """Test parsing environment documents."""

    def test_inline_module(self, tmp_path):
        """Modules can declare resources inline."""
        spec = parse_environment({
            "environment": "dev",
            "modules": [{
                "name": "app",
                "resources": [{"name": "bucket", "type": "s3_bucket", "attributes": {"acl": "private"}}],
            }],
        }, tmp_path)

        app = spec.get_module("app")
        assert app.variables is None
        assert app.resources[0].attributes == {"acl": "private"}

    def test_source_file(self, tmp_path):
        """A source can point at a YAML file rather than a directory."""
        _write(tmp_path / "bucket.yaml", {"resources": [{"name": "b", "type": "s3_bucket"}]})
        spec = parse_environment({"modules": [{"name": "storage", "source": "bucket.yaml"}]}, tmp_path)
        assert spec.get_module("storage").resources[0].type == "s3_bucket"

    def test_missing_source(self, tmp_path):
        """Unknown sources of enabled modules are errors."""
        with pytest.raises(ConfigurationError, match="Module source not found"):
            parse_environment({"modules": [{"name": "x", "source": "nowhere"}]}, tmp_path)

    def test_source_and_inline_conflict(self, tmp_path):
        """A module cannot have both a source and inline resources."""
        _write(tmp_path / "m.yaml", {"resources": []})
        with pytest.raises(ConfigurationError, match="both a source and inline"):
            parse_environment({"modules": [{"name": "x", "source": "m.yaml", "resources": []}]}, tmp_path)

    def test_unknown_definition_keys(self, tmp_path):
        """Module definitions only accept variables, resources and outputs."""
        _write(tmp_path / "m.yaml", {"resources": [], "providers": {}})
        with pytest.raises(ConfigurationError, match="Unknown keys"):
            parse_environment({"modules": [{"name": "x", "source": "m.yaml"}]}, tmp_path)

    def test_duplicate_module_names(self, tmp_path):
        """Module names are unique."""
        with pytest.raises(ConfigurationError, match="duplicate module name"):
            parse_environment({"modules": [{"name": "a"}, {"name": "a"}]}, tmp_path)

    def test_duplicate_resource_names(self, tmp_path):
        """Resource names are unique within a module."""
        resources = [{"name": "r", "type": "t"}, {"name": "r", "type": "t"}]
        with pytest.raises(ConfigurationError, match="duplicate resource name"):
            parse_environment({"modules": [{"name": "a", "resources": resources}]}, tmp_path)

    def test_modules_must_be_list(self, tmp_path):
        with pytest.raises(ConfigurationError, match="must be a list"):
            parse_environment({"modules": {"name": "a"}}, tmp_path)


class TestVariableSpec:
    """Test required/optional inputs."""

    def test_explicit_null_default_is_optional(self):
        """A default of null still makes the input optional."""
        assert not VariableSpec(default=None).required
        assert VariableSpec(description="needed").required
