"""Example usage of the work graph and error handling, without AWS access."""

import time

from botocore.exceptions import ClientError

from stack_deploy.assets import AssetManifest, FileAsset, FileAssetDestination, FileAssetSource
from stack_deploy.config import ConcurrencyConfig
from stack_deploy.deployments import StackDescriptor
from stack_deploy.orchestrator import NodeState, WorkGraphActions, WorkGraphBuilder
from stack_deploy.utils import AWSEnvironment, ErrorContext, error_handler

ENVIRONMENT = AWSEnvironment(account='123456789012', region='us-east-1')


def make_stacks():
    """Three stacks; two of them share a Lambda bundle."""
    bundle = FileAsset(
        id='handler-bundle',
        source=FileAssetSource(path='lambda/', packaging='zip'),
        destination=FileAssetDestination(bucket_name='my-assets', object_key='handler.zip')
    )
    template = {'Resources': {'Topic': {'Type': 'AWS::SNS::Topic'}}}

    network = StackDescriptor(name='network', template=template, environment=ENVIRONMENT)
    api = StackDescriptor(
        name='api',
        template=template,
        environment=ENVIRONMENT,
        dependencies=['network'],
        assets=AssetManifest('api', [bundle])
    )
    worker = StackDescriptor(
        name='worker',
        template=template,
        environment=ENVIRONMENT,
        assets=AssetManifest('worker', [bundle])
    )
    return [network, api, worker]


def example_work_graph():
    """Example: Building and running a work graph with fake executors."""
    print("=== Work Graph ===")

    graph = WorkGraphBuilder(prebuild_assets=True).build(make_stacks())
    print(graph)

    def deploy_stack(node):
        print(f"  deploying {node.id}")
        time.sleep(0.1)

    def build_asset(node):
        print(f"  building {node.asset.id}")

    def publish_asset(node):
        print(f"  publishing {node.asset.id}")

    result = graph.do_parallel(
        ConcurrencyConfig(stack=2),
        WorkGraphActions(deploy_stack=deploy_stack, build_asset=build_asset, publish_asset=publish_asset)
    )
    print(f"✓ Completed: {', '.join(result.ids_in_state(NodeState.COMPLETED))}")


def example_failure_isolation():
    """Example: A failed build skips its dependents only."""
    print("\n=== Failure Isolation ===")

    graph = WorkGraphBuilder().build(make_stacks())

    def build_asset(node):
        raise RuntimeError('docker daemon not running')

    result = graph.do_parallel(
        ConcurrencyConfig(),
        WorkGraphActions(deploy_stack=lambda node: None, build_asset=build_asset, publish_asset=lambda node: None)
    )
    for node_id, state in result.states.items():
        print(f"  {node_id}: {state.value}")

    deployment_error = error_handler.handle_exception(result.first_error)
    print(deployment_error.to_user_message())


def example_error_handling():
    """Example: Translating a CloudFormation error."""
    print("\n=== Error Handling ===")

    error = ClientError(
        {
            'Error': {'Code': 'InsufficientCapabilitiesException', 'Message': 'Requires capabilities : [CAPABILITY_IAM]'},
            'ResponseMetadata': {'RequestId': 'abc-123'}
        },
        'CreateChangeSet'
    )
    context = ErrorContext(stack_name='api', operation='create_change_set')
    print(error_handler.handle_exception(error, context).to_user_message())


def main():
    """Run all examples."""
    print("Work Graph and Error Handling Examples")
    print("=" * 60)

    example_work_graph()
    example_failure_isolation()
    example_error_handling()

    print("\n" + "=" * 60)
    print("Examples completed!")


if __name__ == '__main__':
    main()
