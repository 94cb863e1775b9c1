"""Tests for the command line interface."""

import click
import pytest
from click.testing import CliRunner
from pydantic import ValidationError

from stack_deploy.cli.main import build_options, cli, parse_tag_flags
from stack_deploy.config.models import DeployOptions


class TestBuildOptions:
    """Test merging command line flags into configured options."""

    def test_flags_override_configuration(self):
        base = DeployOptions(
            tags={'team': 'platform'},
            parameters={'*': {'Env': 'dev'}},
            rollback=True
        )

        options = build_options(
            base,
            parameters=['Env=prod', 'api:Size=large'],
            tags=['owner=ops'],
            rollback=False,
            method='direct',
            concurrency=3,
            asset_parallelism=2,
            prebuild=False,
            force=True
        )

        assert options.parameters == {'*': {'Env': 'prod'}, 'api': {'Size': 'large'}}
        assert options.tags == {'team': 'platform', 'owner': 'ops'}
        assert options.rollback is False
        assert options.deployment_method.method == 'direct'
        assert options.concurrency.stack == 3
        assert options.concurrency.asset_publish == 2
        assert options.prebuild_assets is False
        assert options.force_deployment is True

    def test_unset_flags_keep_configuration(self):
        base = DeployOptions(rollback=False, notification_arns=['arn:aws:sns:us-east-1:123456789012:a'])

        options = build_options(base)

        assert options.rollback is False
        assert options.notification_arns == ['arn:aws:sns:us-east-1:123456789012:a']
        assert options.deployment_method.execute is True

    def test_invalid_combination_is_rejected(self):
        with pytest.raises(ValidationError):
            build_options(DeployOptions(), execute_existing=True)

    def test_malformed_tag(self):
        with pytest.raises(click.BadParameter):
            parse_tag_flags(['no-equals'])


class TestValidateCommand:
    """Test the validate command."""

    @pytest.fixture(autouse=True)
    def in_tmp_path(self, tmp_path, monkeypatch):
        # The log directory is created relative to the working directory
        monkeypatch.chdir(tmp_path)

    def test_valid_configuration(self, tmp_path):
        (tmp_path / 'network.yaml').write_text('Resources:\n  Vpc:\n    Type: AWS::EC2::VPC\n')
        config = tmp_path / 'stack-deploy.yaml'
        config.write_text('stacks:\n  - name: network\n    template: network.yaml\n')

        result = CliRunner().invoke(cli, ['validate', '--config', str(config)])

        assert result.exit_code == 0
        assert 'Configuration is valid' in result.output

    def test_unreadable_template(self, tmp_path):
        config = tmp_path / 'stack-deploy.yaml'
        config.write_text('stacks:\n  - name: network\n    template: missing.yaml\n')

        result = CliRunner().invoke(cli, ['validate', '--config', str(config)])

        assert result.exit_code == 1

    def test_missing_configuration(self, tmp_path):
        result = CliRunner().invoke(cli, ['validate', '--config', str(tmp_path / 'nope.yaml')])

        assert result.exit_code == 1
        assert 'Configuration file not found' in result.output
