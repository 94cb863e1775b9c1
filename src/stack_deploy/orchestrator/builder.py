"""Builds the work graph for a set of stacks and their assets."""

from typing import Iterable, List

from stack_deploy.assets.manifest import FileAsset
from stack_deploy.deployments.descriptor import StackDescriptor
from stack_deploy.orchestrator.work_graph import (
    AssetBuildNode,
    AssetPublishNode,
    NodeKind,
    StackNode,
    WorkGraph,
)
from stack_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class WorkGraphBuilder:
    """Turns stacks and asset manifests into a WorkGraph.

    Stack node ids are the stack names. Asset node ids are derived from the
    asset id plus a digest of its source (build) or destination (publish),
    so two stacks sharing an asset share its build node.
    """

    # Higher priorities start first when several nodes are ready
    PRIORITIES = {
        NodeKind.ASSET_PUBLISH: 0,
        NodeKind.ASSET_BUILD: 1,
        NodeKind.STACK: 5,
    }

    def __init__(self, prebuild_assets: bool = True):
        """Initialize the builder.

        Args:
            prebuild_assets: Build every asset as early as possible. When
                False, a stack's asset builds also wait for the stack's own
                dependencies, so they run just before the stack deploys.
        """
        self.prebuild_assets = prebuild_assets
        self.graph = WorkGraph()

    def build(self, stacks: Iterable[StackDescriptor]) -> WorkGraph:
        """Build the graph.

        Args:
            stacks: Stacks selected for this run, with their asset manifests

        Returns:
            The work graph, not yet validated for cycles
        """
        stacks = list(stacks)
        for stack in stacks:
            self._add_stack(stack)
        for stack in stacks:
            for asset in stack.assets.assets:
                self._add_asset(stack, asset)

        self.graph.remove_unavailable_dependencies()
        self._remove_stack_publish_cycles()

        logger.debug(f"Work graph:\n{self.graph}")
        return self.graph

    def _add_stack(self, stack: StackDescriptor) -> None:
        self.graph.add_nodes(StackNode(
            id=stack.name,
            dependencies=set(stack.dependencies),
            priority=self.PRIORITIES[NodeKind.STACK],
            stack=stack
        ))

    def _add_asset(self, parent_stack: StackDescriptor, asset: FileAsset) -> None:
        build_id = asset.build_id
        publish_id = asset.publish_id
        inherited: List[str] = list(parent_stack.dependencies)

        if build_id not in self.graph.nodes:
            self.graph.add_nodes(AssetBuildNode(
                id=build_id,
                dependencies=set() if self.prebuild_assets else set(inherited),
                priority=self.PRIORITIES[NodeKind.ASSET_BUILD],
                asset=asset,
                parent_stack=parent_stack
            ))

        if publish_id not in self.graph.nodes:
            self.graph.add_nodes(AssetPublishNode(
                id=publish_id,
                dependencies={build_id},
                priority=self.PRIORITIES[NodeKind.ASSET_PUBLISH],
                asset=asset,
                parent_stack=parent_stack
            ))

        # Publishing waits for the parent's stack dependencies too. That can
        # introduce cycles, which are removed once all nodes exist.
        for dependency in inherited:
            self.graph.add_dependency(publish_id, dependency)

        self.graph.add_dependency(parent_stack.name, publish_id)

    def _remove_stack_publish_cycles(self) -> None:
        for publish in self.graph.nodes_of_kind(NodeKind.ASSET_PUBLISH):
            for dependency in list(publish.dependencies):
                if self.graph.reachable(dependency, publish.id):
                    logger.debug(f"Removing cyclic dependency {publish.id} -> {dependency}")
                    self.graph.remove_dependency(publish.id, dependency)


def build_work_graph(stacks: Iterable[StackDescriptor], prebuild_assets: bool = True) -> WorkGraph:
    return WorkGraphBuilder(prebuild_assets).build(stacks)
