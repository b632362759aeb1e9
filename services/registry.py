"""
Service Registry - lazy, dependency-resolving container for repositories,
provider clients and services. Attached to the Flask app as ``app.services``.
"""
from typing import Dict, Any, Callable, Optional, List, Set
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    SINGLETON = "singleton"  # One instance per application
    SCOPED = "scoped"        # One instance per scope id


class ServiceDescriptor:
    """How to build one named service"""

    def __init__(self,
                 name: str,
                 factory: Optional[Callable] = None,
                 instance: Optional[Any] = None,
                 lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                 dependencies: Optional[List[str]] = None):
        self.name = name
        self.factory = factory
        self.instance = instance
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.lock = threading.Lock()


class ServiceRegistry:
    """
    Registry of lazily built services.

    Factories receive their dependencies as keyword arguments named after the
    dependency. Singletons are built once under a per-service lock; scoped
    services are cached per scope id. Dependency cycles are reported when a
    service is first built.
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._scoped_instances: Dict[str, Dict[str, Any]] = {}
        self._building = threading.local()
        self._lock = threading.RLock()

    # Registration

    def register(self, name: str, service: Any) -> None:
        """Register an already-built instance"""
        with self._lock:
            self._descriptors[name] = ServiceDescriptor(name=name, instance=service)

    def register_factory(self,
                         name: str,
                         factory: Callable,
                         dependencies: Optional[List[str]] = None,
                         lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON) -> None:
        with self._lock:
            self._descriptors[name] = ServiceDescriptor(
                name=name,
                factory=factory,
                lifecycle=lifecycle,
                dependencies=dependencies,
            )

    def register_singleton(self, name: str, factory: Callable, dependencies: Optional[List[str]] = None) -> None:
        self.register_factory(name, factory, dependencies=dependencies, lifecycle=ServiceLifecycle.SINGLETON)

    # Resolution

    def get(self, name: str, scope_id: Optional[str] = None) -> Any:
        """
        Get a service, building it and its dependencies on first use.

        Raises:
            ValueError: If the service is not registered
            RuntimeError: If its dependencies form a cycle
        """
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise ValueError(f"Service '{name}' is not registered")

        stack = self._stack()
        if name in stack:
            raise RuntimeError(f"Circular dependency detected: {' -> '.join(stack + [name])}")

        if descriptor.instance is not None:
            return descriptor.instance
        if descriptor.lifecycle == ServiceLifecycle.SCOPED:
            return self._get_scoped(descriptor, scope_id or 'default')
        return self._get_singleton(descriptor)

    def has(self, name: str) -> bool:
        return name in self._descriptors

    def _stack(self) -> List[str]:
        if not hasattr(self._building, 'stack'):
            self._building.stack = []
        return self._building.stack

    def _get_singleton(self, descriptor: ServiceDescriptor) -> Any:
        with descriptor.lock:
            if descriptor.instance is None:
                descriptor.instance = self._build(descriptor)
            return descriptor.instance

    def _get_scoped(self, descriptor: ServiceDescriptor, scope_id: str) -> Any:
        with self._lock:
            scope = self._scoped_instances.setdefault(scope_id, {})
            if descriptor.name not in scope:
                scope[descriptor.name] = self._build(descriptor)
            return scope[descriptor.name]

    def _build(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.factory is None:
            raise ValueError(f"No factory registered for '{descriptor.name}'")

        stack = self._stack()
        stack.append(descriptor.name)
        try:
            deps = {dep: self.get(dep) for dep in descriptor.dependencies}
            instance = descriptor.factory(**deps)
            logger.debug(f"Created service instance: {descriptor.name}")
            return instance
        finally:
            stack.pop()

    # Cache control

    def reset_service(self, name: str) -> None:
        """Drop the cached instance of one service (factory-built services only)"""
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            return
        if descriptor.factory is not None:
            with descriptor.lock:
                descriptor.instance = None
        with self._lock:
            for scope in self._scoped_instances.values():
                scope.pop(name, None)

    def clear_scope(self, scope_id: str) -> None:
        with self._lock:
            self._scoped_instances.pop(scope_id, None)

    def clear_all_instances(self) -> None:
        """Drop every factory-built instance; registrations are kept"""
        for name in list(self._descriptors):
            self.reset_service(name)

    def clear_dependency_chain(self, name: str) -> None:
        """Drop ``name`` and every service that depends on it, directly or not"""
        dependents = {name}
        changed = True
        while changed:
            changed = False
            for other, descriptor in self._descriptors.items():
                if other not in dependents and dependents.intersection(descriptor.dependencies):
                    dependents.add(other)
                    changed = True
        for service_name in dependents:
            self.reset_service(service_name)

    # Introspection

    def list_services(self) -> List[str]:
        return sorted(self._descriptors)

    def validate_dependencies(self) -> List[str]:
        """
        Returns:
            One message per dependency that is not registered (empty if valid)
        """
        return [
            f"Service '{name}' depends on unregistered service '{dep}'"
            for name, descriptor in self._descriptors.items()
            for dep in descriptor.dependencies
            if dep not in self._descriptors
        ]

    def get_initialization_order(self) -> List[str]:
        """
        Services ordered so each comes after its dependencies.

        Raises:
            RuntimeError: If a dependency cycle exists
        """
        order: List[str] = []
        done: Set[str] = set()

        def visit(name: str, path: List[str]):
            if name in path:
                raise RuntimeError(f"Circular dependency detected: {' -> '.join(path + [name])}")
            if name in done:
                return
            descriptor = self._descriptors.get(name)
            for dep in (descriptor.dependencies if descriptor else []):
                visit(dep, path + [name])
            done.add(name)
            order.append(name)

        for name in self._descriptors:
            visit(name, [])
        return order

    def warmup(self, services: List[str]) -> None:
        """Build the named services ahead of first use, dependencies first"""
        for name in self.get_initialization_order():
            if name in services:
                logger.info(f"Warming up service: {name}")
                self.get(name)
