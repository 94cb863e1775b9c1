"""Tests for the deployment orchestrator."""

import json
from unittest.mock import Mock, patch

import pytest

from fakes import ACCOUNT, REGION
from stack_deploy.config.models import DeployOptions, EngineSettings
from stack_deploy.config.parser import Config
from stack_deploy.deployments.deploy_stack import StackDeployer
from stack_deploy.deployments.progress import DeployEvent
from stack_deploy.deployments.results import ReplacementRequiresRollbackStackResult
from stack_deploy.orchestrator.orchestrator import Orchestrator, load_stacks, write_outputs_file
from stack_deploy.orchestrator.work_graph import NodeState
from stack_deploy.utils.aws_client import AWSEnvironment
from stack_deploy.utils.errors import ConfigurationError, InternalError, PollTimeoutError, StackDeploymentError

TWO_BUCKETS = {
    'Resources': {
        'Bucket': {'Type': 'AWS::S3::Bucket'},
        'Logs': {'Type': 'AWS::S3::Bucket'},
    }
}


@pytest.fixture
def client_manager(cfn):
    manager = Mock()
    ssm = Mock()

    def get_client(service, region=None):
        return cfn if service == 'cloudformation' else ssm

    manager.get_client.side_effect = get_client
    manager.get_account_id.return_value = ACCOUNT
    return manager


@pytest.fixture
def asset_handler():
    handler = Mock()
    handler.is_published.return_value = False
    return handler


@pytest.fixture
def make_orchestrator(client_manager, settings, asset_handler):
    def factory(**kwargs):
        kwargs.setdefault('options', DeployOptions())
        return Orchestrator(
            client_manager,
            settings=settings,
            asset_handler=asset_handler,
            sleep=lambda _: None,
            **kwargs
        )
    return factory


class TestDeploy:
    """Test whole runs."""

    def test_deploys_new_stacks_in_order(self, cfn, make_orchestrator, make_stack):
        stacks = [make_stack('network'), make_stack('api', dependencies=['network'])]

        result = make_orchestrator().deploy(stacks)

        assert result.is_success()
        assert [stack.stack_name for stack in result.stacks] == ['network', 'api']
        executed = [call['StackName'] for call in cfn.called('execute_change_set')]
        assert executed == ['network', 'api']
        assert result.outputs == {
            'network': {'BucketName': 'network-bucket'},
            'api': {'BucketName': 'api-bucket'},
        }
        assert result.stacks[0].stack_arn == cfn.stack_id('network')

    def test_unchanged_stack_is_a_no_op(self, cfn, make_orchestrator, make_stack):
        cfn.add_stack('api', outputs={'Url': 'https://example.com'})

        result = make_orchestrator().deploy([make_stack('api')])

        assert result.is_success()
        assert result.stacks[0].no_op
        assert result.outputs == {'api': {'Url': 'https://example.com'}}
        assert cfn.called('create_change_set') == []

    def test_failure_is_isolated_to_dependents(self, cfn, make_orchestrator, make_stack):
        stacks = [
            make_stack('broken', notification_arns=['not-an-arn']),
            make_stack('consumer', dependencies=['broken']),
            make_stack('independent'),
        ]

        result = make_orchestrator().deploy(stacks)

        assert not result.is_success()
        states = {stack.stack_name: stack.state for stack in result.stacks}
        assert states == {
            'broken': NodeState.FAILED,
            'consumer': NodeState.SKIPPED,
            'independent': NodeState.COMPLETED,
        }
        assert isinstance(result.first_error, ConfigurationError)
        assert result.stacks[0].error is result.first_error
        assert result.stacks[0].error.context.stack_name == 'broken'
        assert list(result.outputs) == ['independent']

    def test_stack_in_another_account_fails_before_any_call(self, cfn, make_orchestrator, make_stack):
        foreign = make_stack('foreign')
        foreign.environment = AWSEnvironment(account='210987654321', region=REGION)

        result = make_orchestrator().deploy([foreign, make_stack('local')])

        states = {stack.stack_name: stack.state for stack in result.stacks}
        assert states == {'foreign': NodeState.FAILED, 'local': NodeState.COMPLETED}
        error = result.stacks[0].error
        assert isinstance(error, ConfigurationError)
        assert str(error) == (
            'Stack foreign targets account 210987654321, '
            f'but the current credentials belong to account {ACCOUNT}'
        )
        assert [call for call in cfn.calls if call[1].get('StackName') == 'foreign'] == []

    def test_stuck_change_set_fails_only_its_stack(self, cfn, client_manager, asset_handler, make_stack):
        settings = EngineSettings(poll_interval_seconds=0, change_set_timeout_seconds=0.01)
        orchestrator = Orchestrator(
            client_manager,
            options=DeployOptions(),
            settings=settings,
            asset_handler=asset_handler,
            sleep=lambda _: None
        )
        cfn.change_set_results_by_stack['stuck'] = {'Status': 'CREATE_IN_PROGRESS'}
        stacks = [
            make_stack('stuck'),
            make_stack('consumer', dependencies=['stuck']),
            make_stack('independent'),
        ]

        result = orchestrator.deploy(stacks)

        states = {stack.stack_name: stack.state for stack in result.stacks}
        assert states == {
            'stuck': NodeState.FAILED,
            'consumer': NodeState.SKIPPED,
            'independent': NodeState.COMPLETED,
        }
        assert isinstance(result.stacks[0].error, PollTimeoutError)

    def test_run_options_reach_each_stack(self, cfn, make_orchestrator, make_stack):
        options = DeployOptions(
            tags={'team': 'platform'},
            notification_arns=['arn:aws:sns:us-east-1:123456789012:run'],
            parameters={'*': {'Env': 'prod'}, 'api': {'Size': 'large'}}
        )
        template = {
            'Parameters': {'Env': {'Type': 'String'}, 'Size': {'Type': 'String', 'Default': 'small'}},
            'Resources': {'Bucket': {'Type': 'AWS::S3::Bucket'}},
        }
        stack = make_stack('api', template=template, notification_arns=['arn:aws:sns:us-east-1:123456789012:own'])

        result = make_orchestrator(options=options).deploy([stack])

        assert result.is_success()
        request = cfn.called('create_change_set')[0]
        assert request['Tags'] == [{'Key': 'team', 'Value': 'platform'}]
        assert request['NotificationARNs'] == [
            'arn:aws:sns:us-east-1:123456789012:run',
            'arn:aws:sns:us-east-1:123456789012:own',
        ]
        assert sorted(request['Parameters'], key=lambda p: p['ParameterKey']) == [
            {'ParameterKey': 'Env', 'ParameterValue': 'prod'},
            {'ParameterKey': 'Size', 'ParameterValue': 'large'},
        ]

    def test_published_assets_are_not_republished(self, make_orchestrator, make_stack, asset_handler):
        from stack_deploy.assets.manifest import AssetManifest, FileAsset, FileAssetDestination, FileAssetSource

        asset = FileAsset(
            id='bundle',
            source=FileAssetSource(path='src', packaging='zip'),
            destination=FileAssetDestination(bucket_name='assets-bucket', object_key='bundle.zip')
        )
        stack = make_stack('api', assets=AssetManifest('api', [asset]))
        asset_handler.is_published.return_value = True

        result = make_orchestrator().deploy([stack])

        assert result.is_success()
        asset_handler.build.assert_not_called()
        asset_handler.publish.assert_not_called()

    def test_assets_are_built_and_published_before_the_stack(self, cfn, make_orchestrator, make_stack,
                                                             asset_handler):
        from stack_deploy.assets.manifest import AssetManifest, FileAsset, FileAssetDestination, FileAssetSource

        asset = FileAsset(
            id='bundle',
            source=FileAssetSource(path='src', packaging='zip'),
            destination=FileAssetDestination(bucket_name='assets-bucket', object_key='bundle.zip')
        )
        order = []
        asset_handler.build.side_effect = lambda a: order.append('build')
        asset_handler.publish.side_effect = lambda a: order.append('publish')
        stack = make_stack('api', assets=AssetManifest('api', [asset]))

        result = make_orchestrator().deploy([stack])

        assert result.is_success()
        assert order == ['build', 'publish']
        asset_handler.build.assert_called_once_with(asset)

    def test_outputs_file(self, tmp_path, make_orchestrator, make_stack):
        path = tmp_path / 'out' / 'outputs.json'
        options = DeployOptions(outputs_file=str(path))

        make_orchestrator(options=options).deploy([make_stack('api')])

        assert json.loads(path.read_text()) == {'api': {'BucketName': 'api-bucket'}}

    def test_unwritable_outputs_file_does_not_fail_the_run(self, tmp_path, make_orchestrator, make_stack):
        options = DeployOptions(outputs_file=str(tmp_path))

        result = make_orchestrator(options=options).deploy([make_stack('api')])

        assert result.is_success()


class TestDeployStackRetries:
    """Test the rollback-then-retry loop."""

    def test_paused_stack_is_rolled_back_then_deployed(self, cfn, make_orchestrator, make_stack):
        cfn.add_stack('api', status='UPDATE_FAILED')
        questions = []
        events = []

        def confirm(question):
            questions.append(question)
            return True

        orchestrator = make_orchestrator(
            confirm=confirm,
            progress_callback=lambda subject, event, message: events.append(event)
        )
        result = orchestrator.deploy_stack(make_stack('api', template=TWO_BUCKETS))

        assert not result.no_op
        assert len(cfn.called('rollback_stack')) == 1
        assert len(cfn.called('execute_change_set')) == 1
        assert cfn.stacks['api']['StackStatus'] == 'UPDATE_COMPLETE'
        assert questions == [
            'Stack is in a paused fail state (UPDATE_FAILED) and rollback is enabled. '
            'Roll back first and then proceed with deployment?'
        ]
        assert DeployEvent.ROLLBACK_STARTED in events
        assert DeployEvent.ROLLBACK_FINISHED in events

    def test_refused_rollback_aborts(self, cfn, make_orchestrator, make_stack):
        cfn.add_stack('api', status='UPDATE_FAILED')

        result = make_orchestrator(confirm=lambda question: False).deploy([make_stack('api', template=TWO_BUCKETS)])

        assert result.stacks[0].state == NodeState.FAILED
        assert isinstance(result.first_error, StackDeploymentError)
        assert str(result.first_error) == 'Aborted by user'
        assert cfn.called('rollback_stack') == []

    def test_replacement_without_rollback_retries_with_rollback(self, cfn, make_orchestrator, make_stack):
        cfn.add_stack('api')
        cfn.pending_changes = [
            {'Type': 'Resource', 'ResourceChange': {'Action': 'Modify', 'LogicalResourceId': 'Bucket',
                                                    'Replacement': 'True'}}
        ]
        options = DeployOptions(rollback=False)

        result = make_orchestrator(options=options).deploy_stack(make_stack('api', template=TWO_BUCKETS))

        assert not result.no_op
        executions = cfn.called('execute_change_set')
        assert len(executions) == 1
        assert 'DisableRollback' not in executions[0]

    def test_attempts_are_bounded(self, make_orchestrator, make_stack):
        orchestrator = make_orchestrator()

        with patch.object(StackDeployer, 'deploy', return_value=ReplacementRequiresRollbackStackResult()):
            with pytest.raises(InternalError) as exc_info:
                orchestrator.deploy_stack(make_stack('api'))

        assert 'did not stabilize in 2 attempts' in str(exc_info.value)

    def test_environment_resources_are_shared(self, make_orchestrator, environment, client_manager):
        orchestrator = make_orchestrator()

        first = orchestrator.environment_resources(environment)
        second = orchestrator.environment_resources(AWSEnvironment(account=ACCOUNT, region=REGION))

        assert first is second


class TestOutputsFile:
    """Test writing stack outputs."""

    def test_writes_sorted_json(self, tmp_path):
        path = tmp_path / 'outputs.json'

        assert write_outputs_file(str(path), {'b': {'Y': '2'}, 'a': {'X': '1'}})
        assert path.read_text() == json.dumps({'a': {'X': '1'}, 'b': {'Y': '2'}}, indent=2, sort_keys=True)

    def test_directory_target_is_reported(self, tmp_path):
        assert not write_outputs_file(str(tmp_path), {})


class TestLoadStacks:
    """Test turning configuration into descriptors."""

    def test_load_stacks(self, tmp_path):
        (tmp_path / 'templates').mkdir()
        (tmp_path / 'templates' / 'api.yaml').write_text(
            'Resources:\n'
            '  Queue:\n'
            '    Type: AWS::SQS::Queue\n'
            '    Properties:\n'
            '      QueueName: !Sub "${AWS::StackName}-queue"\n'
        )
        config_path = tmp_path / 'stack-deploy.yaml'
        config_path.write_text(
            'stacks:\n'
            '  - name: api\n'
            '    template: templates/api.yaml\n'
            '    tags:\n'
            '      team: platform\n'
            '    assets:\n'
            '      - id: bundle\n'
            '        path: lambda\n'
            '        packaging: zip\n'
            '        bucket_name: assets-bucket\n'
            '        object_key: bundle.zip\n'
        )
        config = Config(str(config_path)).load()
        client_manager = Mock()
        client_manager.resolve_environment.return_value = AWSEnvironment(account=ACCOUNT, region='eu-west-1')

        stacks = load_stacks(config, client_manager)

        assert len(stacks) == 1
        stack = stacks[0]
        assert stack.template['Resources']['Queue']['Properties']['QueueName'] == {
            'Fn::Sub': '${AWS::StackName}-queue'
        }
        assert stack.tags == [{'Key': 'team', 'Value': 'platform'}]
        asset = stack.assets.assets[0]
        assert asset.source.path == str(tmp_path / 'lambda')
        assert asset.destination.region == 'eu-west-1'
        client_manager.resolve_environment.assert_called_once_with(None, None)
