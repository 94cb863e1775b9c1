"""Dependency graph of asset builds, asset publishes and stack deployments."""

from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, ClassVar, Dict, Iterable, List, Optional, Set

from stack_deploy.assets.manifest import FileAsset
from stack_deploy.config.models import ConcurrencyConfig
from stack_deploy.deployments.descriptor import StackDescriptor
from stack_deploy.deployments.progress import DeployEvent, ProgressCallback, notify
from stack_deploy.utils.errors import DependencyError, InternalError
from stack_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class NodeKind(Enum):
    """Kind of work a node performs; each kind has its own concurrency ceiling."""
    STACK = "stack"
    ASSET_BUILD = "asset-build"
    ASSET_PUBLISH = "asset-publish"


class NodeState(Enum):
    """Lifecycle of a node during one run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATES = (NodeState.COMPLETED, NodeState.FAILED, NodeState.SKIPPED)


@dataclass(eq=False)
class WorkNode:
    """A unit of work in the graph, addressed by its id."""

    id: str
    dependencies: Set[str] = field(default_factory=set)
    priority: int = 0
    state: NodeState = NodeState.PENDING
    error: Optional[BaseException] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    kind: ClassVar[NodeKind]


@dataclass(eq=False)
class StackNode(WorkNode):
    """Deploys one stack."""

    stack: Optional[StackDescriptor] = None
    kind: ClassVar[NodeKind] = NodeKind.STACK


@dataclass(eq=False)
class AssetBuildNode(WorkNode):
    """Builds one asset source; shared by every stack using that source."""

    asset: Optional[FileAsset] = None
    parent_stack: Optional[StackDescriptor] = None
    kind: ClassVar[NodeKind] = NodeKind.ASSET_BUILD


@dataclass(eq=False)
class AssetPublishNode(WorkNode):
    """Publishes one built asset to one destination."""

    asset: Optional[FileAsset] = None
    parent_stack: Optional[StackDescriptor] = None
    kind: ClassVar[NodeKind] = NodeKind.ASSET_PUBLISH


@dataclass
class WorkGraphActions:
    """Executors the graph calls for each kind of node."""
    deploy_stack: Callable[[StackNode], None]
    build_asset: Callable[[AssetBuildNode], None]
    publish_asset: Callable[[AssetPublishNode], None]


@dataclass
class WorkGraphResult:
    """Outcome of running a work graph.

    Attributes:
        states: Final state of every node
        errors: Errors of failed nodes, by node id
        first_error: Error of the node that failed first
        duration: Wall clock duration of the run in seconds
    """
    states: Dict[str, NodeState] = field(default_factory=dict)
    errors: Dict[str, BaseException] = field(default_factory=dict)
    first_error: Optional[BaseException] = None
    duration: float = 0.0

    def is_success(self) -> bool:
        return not self.errors and all(state == NodeState.COMPLETED for state in self.states.values())

    def ids_in_state(self, state: NodeState) -> List[str]:
        return [node_id for node_id, node_state in self.states.items() if node_state == state]


class WorkGraph:
    """Arena of work nodes with adjacency through dependency id sets.

    Nodes are created while building the graph, mutated only by the
    scheduler loop in ``do_parallel`` and discarded after the run.
    """

    def __init__(self, nodes: Optional[Iterable[WorkNode]] = None):
        self.nodes: Dict[str, WorkNode] = {}
        if nodes:
            self.add_nodes(*nodes)

    def add_nodes(self, *nodes: WorkNode) -> None:
        """Add nodes to the graph.

        Raises:
            InternalError: If a node id is already taken
        """
        for node in nodes:
            if node.id in self.nodes:
                raise InternalError(f"Duplicate work graph node id: {node.id}")
            self.nodes[node.id] = node

    def add_dependency(self, from_id: str, to_id: str) -> None:
        """Make ``from_id`` wait for ``to_id``."""
        self.nodes[from_id].dependencies.add(to_id)

    def remove_dependency(self, from_id: str, to_id: str) -> None:
        self.nodes[from_id].dependencies.discard(to_id)

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every edge pointing at it."""
        self.nodes.pop(node_id, None)
        for node in self.nodes.values():
            node.dependencies.discard(node_id)

    def dependents(self, node_id: str) -> List[WorkNode]:
        """Nodes that depend directly on ``node_id``."""
        return [node for node in self.nodes.values() if node_id in node.dependencies]

    def nodes_of_kind(self, kind: NodeKind) -> List[WorkNode]:
        return [node for node in self.nodes.values() if node.kind == kind]

    def remove_unavailable_dependencies(self) -> None:
        """Drop dependencies on nodes that are not part of this run."""
        for node in self.nodes.values():
            missing = {dep for dep in node.dependencies if dep not in self.nodes}
            if missing:
                logger.debug(f"{node.id}: ignoring dependencies outside this run: {', '.join(sorted(missing))}")
                node.dependencies -= missing

    def remove_unnecessary_assets(self, is_unnecessary: Callable[[AssetPublishNode], bool],
                                  max_workers: int = 8) -> None:
        """Remove publish nodes that need no work, then builds nobody needs anymore.

        Args:
            is_unnecessary: Decides whether a publish node can be dropped
            max_workers: Number of publish nodes checked concurrently
        """
        publishes = self.nodes_of_kind(NodeKind.ASSET_PUBLISH)
        if publishes:
            with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='asset-check') as pool:
                verdicts = list(pool.map(is_unnecessary, publishes))
            for node, unnecessary in zip(publishes, verdicts):
                if unnecessary:
                    logger.debug(f"{node.id}: already published")
                    self.remove_node(node.id)

        for build in self.nodes_of_kind(NodeKind.ASSET_BUILD):
            if not self.dependents(build.id):
                self.remove_node(build.id)

    def reachable(self, from_id: str, to_id: str) -> bool:
        """Whether ``to_id`` is among the transitive dependencies of ``from_id``."""
        visited = set()
        queue = deque([from_id])
        while queue:
            current = queue.popleft()
            if current == to_id:
                return True
            if current in visited or current not in self.nodes:
                continue
            visited.add(current)
            queue.extend(self.nodes[current].dependencies)
        return False

    def find_cycle(self) -> Optional[List[str]]:
        """Find a dependency cycle.

        Returns:
            Node ids forming a cycle (first id repeated at the end), or None
        """
        # White (0): unvisited, Gray (1): visiting, Black (2): visited
        color = {node_id: 0 for node_id in self.nodes}
        stack: List[str] = []

        def dfs(node_id: str) -> Optional[List[str]]:
            color[node_id] = 1
            stack.append(node_id)
            for dep_id in sorted(self.nodes[node_id].dependencies):
                if dep_id not in color:
                    continue
                if color[dep_id] == 1:
                    return stack[stack.index(dep_id):] + [dep_id]
                if color[dep_id] == 0:
                    cycle = dfs(dep_id)
                    if cycle:
                        return cycle
            stack.pop()
            color[node_id] = 2
            return None

        for node_id in self.nodes:
            if color[node_id] == 0:
                cycle = dfs(node_id)
                if cycle:
                    return cycle
        return None

    def validate(self) -> None:
        """Raise DependencyError if the graph contains a cycle."""
        cycle = self.find_cycle()
        if cycle:
            raise DependencyError(f"Unable to make progress anymore, dependency cycle: {' -> '.join(cycle)}")

    def ready_pool(self) -> List[WorkNode]:
        """Pending nodes whose dependencies all completed, highest priority first."""
        ready = [
            node for node in self.nodes.values()
            if node.state == NodeState.PENDING
            and all(self.nodes[dep].state == NodeState.COMPLETED for dep in node.dependencies if dep in self.nodes)
        ]
        # Stable sort keeps insertion order among equal priorities
        return sorted(ready, key=lambda node: -node.priority)

    def do_parallel(
        self,
        concurrency: ConcurrencyConfig,
        actions: WorkGraphActions,
        progress_callback: Optional[ProgressCallback] = None
    ) -> WorkGraphResult:
        """Run every node, honoring dependencies and per-kind ceilings.

        A failed node marks its pending transitive dependents as skipped.
        Unrelated branches keep running, and the run only ends once every
        node is in a terminal state.

        Args:
            concurrency: Ceilings per node kind
            actions: Executors for each node kind
            progress_callback: Receives node lifecycle events

        Returns:
            WorkGraphResult

        Raises:
            DependencyError: If the graph contains a cycle
        """
        self.validate()

        limits = {
            NodeKind.STACK: concurrency.stack,
            NodeKind.ASSET_BUILD: concurrency.asset_build,
            NodeKind.ASSET_PUBLISH: concurrency.asset_publish,
        }
        active = {kind: 0 for kind in NodeKind}
        running: Dict[Future, WorkNode] = {}
        result = WorkGraphResult()
        start_time = datetime.now(timezone.utc)

        logger.info(f"Running work graph with {len(self.nodes)} nodes")

        with ThreadPoolExecutor(max_workers=sum(limits.values()), thread_name_prefix='work-graph') as pool:
            while True:
                self._skip_blocked_nodes(progress_callback)

                for node in self.ready_pool():
                    if active[node.kind] >= limits[node.kind]:
                        continue
                    active[node.kind] += 1
                    node.state = NodeState.RUNNING
                    node.start_time = datetime.now(timezone.utc)
                    notify(progress_callback, node.id, DeployEvent.NODE_STARTED, node.kind.value)
                    running[pool.submit(self._execute, actions, node)] = node

                if not running:
                    break

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    node = running.pop(future)
                    active[node.kind] -= 1
                    node.end_time = datetime.now(timezone.utc)
                    node.duration = (node.end_time - node.start_time).total_seconds()

                    error = future.exception()
                    if error is None:
                        node.state = NodeState.COMPLETED
                        logger.debug(f"{node.id} completed in {node.duration:.1f}s")
                        notify(progress_callback, node.id, DeployEvent.NODE_COMPLETED, '')
                    else:
                        node.state = NodeState.FAILED
                        node.error = error
                        result.errors[node.id] = error
                        if result.first_error is None:
                            result.first_error = error
                        logger.error(f"{node.id} failed: {error}")
                        notify(progress_callback, node.id, DeployEvent.NODE_FAILED, str(error))

        stuck = [node.id for node in self.nodes.values() if node.state not in TERMINAL_STATES]
        if stuck:
            raise DependencyError(f"Unable to make progress anymore, remaining nodes: {', '.join(stuck)}")

        result.states = {node_id: node.state for node_id, node in self.nodes.items()}
        result.duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        return result

    def _skip_blocked_nodes(self, progress_callback: Optional[ProgressCallback]) -> None:
        changed = True
        while changed:
            changed = False
            for node in self.nodes.values():
                if node.state != NodeState.PENDING:
                    continue
                blocked_by = [
                    dep for dep in node.dependencies
                    if dep in self.nodes and self.nodes[dep].state in (NodeState.FAILED, NodeState.SKIPPED)
                ]
                if blocked_by:
                    node.state = NodeState.SKIPPED
                    changed = True
                    logger.warning(f"{node.id} skipped because {', '.join(sorted(blocked_by))} did not complete")
                    notify(progress_callback, node.id, DeployEvent.NODE_SKIPPED, ', '.join(sorted(blocked_by)))

    @staticmethod
    def _execute(actions: WorkGraphActions, node: WorkNode) -> None:
        if isinstance(node, StackNode):
            actions.deploy_stack(node)
        elif isinstance(node, AssetBuildNode):
            actions.build_asset(node)
        elif isinstance(node, AssetPublishNode):
            actions.publish_asset(node)
        else:
            raise InternalError(f"Unknown work graph node type: {type(node).__name__}")

    def __str__(self) -> str:
        lines = ['digraph D {']
        for node in self.nodes.values():
            for dep in sorted(node.dependencies):
                lines.append(f'  "{node.id}" -> "{dep}";')
        lines.append('}')
        return '\n'.join(lines)
