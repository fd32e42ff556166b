from functools import lru_cache

import docker

from nitrod.config import get_settings
from nitrod.services.audit import AuditService
from nitrod.services.caddy import RouteReconciler
from nitrod.services.databases import DatabaseService
from nitrod.services.process import CommandRunner, ContainerExecRunner, LocalProcessRunner
from nitrod.services.proxy_container import ProxyLifecycleManager
from nitrod.services.reachability import ReachabilityGate


@lru_cache
def get_docker_client() -> docker.DockerClient:
    return docker.from_env()


@lru_cache
def get_audit_service() -> AuditService:
    return AuditService(get_settings())


@lru_cache
def get_route_reconciler() -> RouteReconciler:
    return RouteReconciler(get_settings())


@lru_cache
def get_command_runner() -> CommandRunner:
    """Runner for database client commands, picked by ``EXEC_MODE``."""
    settings = get_settings()
    if settings.exec_mode == "container":
        return ContainerExecRunner(
            get_docker_client(),
            wait_timeout=settings.exec_wait_timeout,
            poll_initial_delay=settings.exec_poll_initial_delay,
            poll_max_delay=settings.exec_poll_max_delay,
            show_output=settings.show_process_output,
            log_commands=settings.log_process_commands,
        )
    return LocalProcessRunner(
        timeout=settings.process_timeout,
        show_output=settings.show_process_output,
        log_commands=settings.log_process_commands,
    )


@lru_cache
def get_database_service() -> DatabaseService:
    settings = get_settings()
    gate = ReachabilityGate(
        timeout=settings.reachability_timeout,
        inverted=settings.reachability_inverted,
    )
    return DatabaseService(settings, get_command_runner(), gate)


@lru_cache
def get_proxy_manager() -> ProxyLifecycleManager:
    return ProxyLifecycleManager(get_docker_client(), get_settings())
