"""Work graph scheduling and run orchestration."""

from stack_deploy.orchestrator.work_graph import (
    WorkGraph,
    WorkGraphActions,
    WorkGraphResult,
    WorkNode,
    StackNode,
    AssetBuildNode,
    AssetPublishNode,
    NodeKind,
    NodeState,
)
from stack_deploy.orchestrator.builder import WorkGraphBuilder, build_work_graph
from stack_deploy.orchestrator.orchestrator import (
    Orchestrator,
    DeploymentRunResult,
    StackRunResult,
    ConfirmCallback,
    always_confirm,
    load_stacks,
    write_outputs_file,
)

__all__ = [
    # Work graph
    'WorkGraph',
    'WorkGraphActions',
    'WorkGraphResult',
    'WorkNode',
    'StackNode',
    'AssetBuildNode',
    'AssetPublishNode',
    'NodeKind',
    'NodeState',
    'WorkGraphBuilder',
    'build_work_graph',

    # Orchestration
    'Orchestrator',
    'DeploymentRunResult',
    'StackRunResult',
    'ConfirmCallback',
    'always_confirm',
    'load_stacks',
    'write_outputs_file',
]
